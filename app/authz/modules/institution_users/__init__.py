"""
Institution users: membership of a person in an institution.

Lifecycle:
- ACTIVE until a deactivation date arrives (Estonian calendar day) or the user is archived
- DEACTIVATED users lose their roles and can be re-activated with a fresh role set
- ARCHIVED is terminal
- The only holder of the root role can never leave the ACTIVE state
"""
