"""
PermissionService: single entry point for access decisions.

Dispatches to the evaluator of the requested resource and guarantees the
fail-closed contract: any error while evaluating becomes a denial, never an
exception in the caller.
"""
from typing import Dict, Iterable, List, Optional, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncSession

from workspace_acl.features.permissions.evaluators import ItemEvaluator, PermissionEvaluator, build_evaluators
from workspace_acl.features.permissions.store import PermissionStore
from workspace_acl.features.permissions.types import (
    ALL_ACTIONS,
    Action,
    PermissionContext,
    PermissionSet,
    Resource,
)
from workspace_acl.utils import get_logger


log = get_logger(__name__)


class HasId(Protocol):
    id: str


async def evaluate_safely(
    evaluator: PermissionEvaluator,
    ctx: PermissionContext,
    action: Action,
) -> bool:
    """Run one evaluator; errors are logged and answered with a denial."""
    try:
        decision = await evaluator.evaluate(ctx, action)
    except Exception:
        log.exception(
            "Permission check failed, denying: user=%s resource=%s action=%s ctx=%s",
            ctx.user_id, evaluator.resource.value, action.value, ctx,
        )
        return False

    if not decision.allowed:
        log.debug(
            "Denied %s on %s for user %s (%s)",
            action.value, evaluator.resource.value, ctx.user_id, ctx,
        )
    return decision.allowed


class PermissionService:
    """
    Facade over the evaluator chain.

    Usage:
        service = PermissionService(db)
        if await service.has_permission(PermissionContext(user_id=u, board_id=b), "write", "board"):
            ...
    """

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        store: Optional[PermissionStore] = None,
        evaluators: Optional[Dict[Resource, PermissionEvaluator]] = None,
    ):
        if store is None:
            if db is None:
                raise ValueError("PermissionService needs a database session or a store")
            store = PermissionStore(db)
        self.store = store
        self.evaluators = evaluators if evaluators is not None else build_evaluators(store)

    async def has_permission(
        self,
        context: PermissionContext,
        action: Union[Action, str],
        resource: Union[Resource, str],
    ) -> bool:
        try:
            action = Action(action)
            resource = Resource(resource)
        except ValueError:
            log.warning("Unknown action/resource %r on %r, denying", action, resource)
            return False

        evaluator = self.evaluators.get(resource)
        if evaluator is None:
            return False
        return await evaluate_safely(evaluator, context, action)

    async def get_permissions(
        self,
        context: PermissionContext,
        resource: Union[Resource, str],
    ) -> PermissionSet:
        # One session cannot run queries concurrently, so actions are checked in turn
        results = {}
        for action in ALL_ACTIONS:
            results[action.value] = await self.has_permission(context, action, resource)
        return PermissionSet(**results)

    async def filter_items_by_access(
        self,
        user_id: str,
        board_id: str,
        items: Iterable[HasId],
    ) -> List[str]:
        """Ids of the given items the user may read, in input order."""
        evaluator = self.evaluators.get(Resource.ITEM)
        if isinstance(evaluator, ItemEvaluator):
            try:
                return await evaluator.readable_item_ids(user_id, board_id, items)
            except Exception:
                log.exception("Item access filter failed, denying all: user=%s board=%s", user_id, board_id)
                return []

        accessible: List[str] = []
        for item in items:
            ctx = PermissionContext(user_id=user_id, board_id=board_id, item_id=item.id)
            if await self.has_permission(ctx, Action.READ, Resource.ITEM):
                accessible.append(item.id)
        return accessible

    async def can_view_column(self, user_id: str, column_id: str) -> bool:
        return await self.has_permission(
            PermissionContext(user_id=user_id, column_id=column_id), Action.READ, Resource.COLUMN
        )

    async def can_edit_column(self, user_id: str, column_id: str) -> bool:
        return await self.has_permission(
            PermissionContext(user_id=user_id, column_id=column_id), Action.WRITE, Resource.COLUMN
        )
