# access_policy.py — Who may perform which action
"""
The write rules are kept as data: every action maps to a Rule naming the role
it needs and whether the caller must also be a member of the target
workspace. Swapping PERMISSIVE_POLICY for MEMBERSHIP_POLICY tightens task
writes without touching any route.

PERMISSIVE_POLICY reproduces the behaviour TaskFlow has always had: any
authenticated user may create/update tasks, comment and upload in any
workspace, whether or not they belong to it.
"""
import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from exceptions import Forbidden
from models import UserRole

logger = logging.getLogger("taskflow.access")


class Action(str, Enum):
    # admin-only
    CREATE_WORKSPACE = "createWorkspace"
    UPDATE_WORKSPACE = "updateWorkspace"
    DELETE_WORKSPACE = "deleteWorkspace"
    MANAGE_MEMBERS = "manageMembers"
    DELETE_TASK = "deleteTask"
    DELETE_USER = "deleteUser"
    MANAGE_USERS = "manageUsers"
    VIEW_ANALYTICS = "viewAnalytics"
    # any authenticated user
    CREATE_TASK = "createTask"
    UPDATE_TASK = "updateTask"
    ADD_COMMENT = "addComment"
    UPLOAD_ATTACHMENT = "uploadAttachment"
    UPLOAD_FILE = "uploadFile"
    DELETE_FILE = "deleteFile"
    USE_BRAIN = "useBrain"


class NonMemberTaskListing(str, Enum):
    """What a worker gets when filtering tasks by a workspace they are not in."""
    EMPTY = "empty"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Rule:
    required_role: Optional[UserRole] = None
    requires_membership: bool = False


ADMIN_ONLY = Rule(required_role=UserRole.ADMIN)
AUTHENTICATED = Rule()
MEMBER = Rule(requires_membership=True)


@dataclass(frozen=True)
class AccessPolicy:
    name: str
    rules: Dict[Action, Rule]
    non_member_task_listing: NonMemberTaskListing = NonMemberTaskListing.EMPTY
    messages: Dict[Action, str] = field(default_factory=dict)

    def rule_for(self, action: Action) -> Rule:
        try:
            return self.rules[Action(action)]
        except (KeyError, ValueError):
            # Unknown actions are never allowed implicitly
            return ADMIN_ONLY

    def check_role(self, role: str, action: Action) -> Rule:
        """Raise Forbidden when the role cannot perform the action; return the rule."""
        rule = self.rule_for(action)
        if rule.required_role is not None and UserRole(role) != rule.required_role:
            name = getattr(action, "value", str(action))
            raise Forbidden(
                self.messages.get(action, "Admin access required"),
                details={"action": name},
            )
        return rule


_ADMIN_ACTIONS = (
    Action.CREATE_WORKSPACE, Action.UPDATE_WORKSPACE, Action.DELETE_WORKSPACE,
    Action.MANAGE_MEMBERS, Action.DELETE_TASK, Action.DELETE_USER,
    Action.MANAGE_USERS, Action.VIEW_ANALYTICS,
)
_TASK_WRITE_ACTIONS = (
    Action.CREATE_TASK, Action.UPDATE_TASK, Action.ADD_COMMENT, Action.UPLOAD_ATTACHMENT,
)
_OPEN_ACTIONS = (Action.UPLOAD_FILE, Action.DELETE_FILE, Action.USE_BRAIN)


PERMISSIVE_POLICY = AccessPolicy(
    name="permissive",
    rules={
        **{a: ADMIN_ONLY for a in _ADMIN_ACTIONS},
        **{a: AUTHENTICATED for a in _TASK_WRITE_ACTIONS},
        **{a: AUTHENTICATED for a in _OPEN_ACTIONS},
    },
    non_member_task_listing=NonMemberTaskListing.EMPTY,
)

MEMBERSHIP_POLICY = AccessPolicy(
    name="membership",
    rules={
        **{a: ADMIN_ONLY for a in _ADMIN_ACTIONS},
        **{a: MEMBER for a in _TASK_WRITE_ACTIONS},
        **{a: AUTHENTICATED for a in _OPEN_ACTIONS},
    },
    non_member_task_listing=NonMemberTaskListing.FORBIDDEN,
)

POLICIES = {p.name: p for p in (PERMISSIVE_POLICY, MEMBERSHIP_POLICY)}


def load_policy(name: Optional[str] = None) -> AccessPolicy:
    name = (name or os.getenv("TASKFLOW_ACCESS_POLICY", "permissive")).lower()
    policy = POLICIES.get(name)
    if policy is None:
        logger.warning(f"Unknown access policy '{name}', falling back to permissive")
        return PERMISSIVE_POLICY
    return policy


ACTIVE_POLICY = load_policy()
