"""Team roles and the admin rights they imply."""

ADMIN = 'ADMIN'
COACH = 'COACH'
COORDINATOR = 'COORDINATOR'
CAPTAIN = 'CAPTAIN'
CO_CAPTAIN = 'CO_CAPTAIN'
MEMBER = 'MEMBER'

# Leadership roles always carry admin rights.
LEADERSHIP_ROLES = (COACH, COORDINATOR, CAPTAIN, CO_CAPTAIN)

# Every role that must carry the admin flag.
ADMIN_ROLES = (ADMIN,) + LEADERSHIP_ROLES

TEAM_ROLES = (ADMIN, COACH, COORDINATOR, CAPTAIN, CO_CAPTAIN, MEMBER)

_ROLE_DESCRIPTIONS = {
    ADMIN: 'Team Administrator',
    COACH: 'Coach',
    COORDINATOR: 'Team Coordinator',
    CAPTAIN: 'Team Captain',
    CO_CAPTAIN: 'Co-Captain',
    MEMBER: 'Team Member',
}


def normalize_role(raw_role):
    return str(raw_role or '').strip().upper().replace('-', '_')


def is_valid_role(role):
    return role in TEAM_ROLES


def should_have_admin_access(role):
    return role in LEADERSHIP_ROLES


def requires_admin(role):
    return role == ADMIN or should_have_admin_access(role)


def correct_admin_status(role, current_is_admin):
    """Admin flag a membership must carry for ``role``.

    MEMBER keeps whatever it had: an admin can hold the plain member role.
    """
    if requires_admin(role):
        return True
    return bool(current_is_admin)


def role_description(role):
    return _ROLE_DESCRIPTIONS.get(role, role)
