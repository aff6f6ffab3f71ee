"""Delivery order lifecycle: state machine, policy, persistence and orchestration."""
