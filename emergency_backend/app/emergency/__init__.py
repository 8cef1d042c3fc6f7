"""
emergency — Call and alert workflow.

Sub-modules:
    orchestrator  — EmergencyOrchestrator: call, alert, history, admin flows
    policies      — severity table, dialing-number policy, status machine
    presentation  — history/statistics view shaping
    background    — BackgroundTaskRunner for post-response work
    ids           — IdGenerator capability
"""
