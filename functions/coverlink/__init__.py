"""
Cover auto-linking for the onboarding service.

Finds the insurance covers the legacy EDI system holds for a user's phone
number and links them to the user's profile, recording an audit trail and
falling back to a manual-review request when EDI rejects the link.
"""
