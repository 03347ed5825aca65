"""
Orchestrator Module - cycles, the auto-fix loop and its state machine
"""
