import logging
from typing import Any, Dict, List

from marketchat.core.errors import NotFoundError, SenderProfileNotFound
from marketchat.models.participant import ParticipantKind, ResolvedParticipant
from marketchat.repositories.contractor_repository import ContractorRepository
from marketchat.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


def is_contractor(caller: Dict[str, Any]) -> bool:
    return str(caller.get("role", "")).lower() == "contractor"


def _user_participant(user: Dict[str, Any]) -> ResolvedParticipant:
    first = user.get("first_name") or ""
    last = user.get("last_name") or ""
    return ResolvedParticipant(
        kind=ParticipantKind.USER,
        id=user["_id"],
        account_id=user["_id"],
        display_name=f"{first} {last}".strip() or "Unknown User",
        first_name=first,
        last_name=last,
        profile_picture=user.get("profile_picture"),
    )


def _contractor_participant(contractor: Dict[str, Any], account: Dict[str, Any]) -> ResolvedParticipant:
    # profile names win, the owning account fills the gaps
    first = contractor.get("first_name") or account.get("first_name") or ""
    last = contractor.get("last_name") or account.get("last_name") or ""
    business = contractor.get("business_name") or ""
    return ResolvedParticipant(
        kind=ParticipantKind.CONTRACTOR,
        id=contractor["_id"],
        account_id=account["_id"],
        display_name=business or f"{first} {last}".strip() or "Unknown Contractor",
        first_name=first,
        last_name=last,
        business_name=business,
        profile_picture=contractor.get("profile_picture"),
    )


class IdentityResolver:
    """Maps user ids and contractor profile ids onto resolved participants."""

    def __init__(self, user_repo: UserRepository, contractor_repo: ContractorRepository) -> None:
        self._users = user_repo
        self._contractors = contractor_repo

    async def resolve(self, ref: str) -> ResolvedParticipant:
        user = await self._users.get_user_by_id(ref)
        if user:
            return _user_participant(user)
        contractor = await self._contractors.get_by_id(ref)
        if not contractor:
            raise NotFoundError(f"Participant {ref} not found")
        account = await self._users.get_user_by_id(contractor["user_id"])
        if not account:
            logger.warning("Contractor %s has no linked account %s", ref, contractor["user_id"])
            raise NotFoundError(f"Linked account for contractor {ref} not found")
        return _contractor_participant(contractor, account)

    async def resolve_caller_send_identity(self, caller: Dict[str, Any]) -> ResolvedParticipant:
        """Contractors send as their business profile; everyone else as their account."""
        if is_contractor(caller):
            contractor = await self._contractors.get_by_account(caller["_id"])
            if not contractor:
                raise SenderProfileNotFound("Sender Contractor profile not found")
            return _contractor_participant(contractor, caller)
        return _user_participant(caller)

    async def describe_caller(self, caller: Dict[str, Any]) -> ResolvedParticipant:
        try:
            return await self.resolve_caller_send_identity(caller)
        except SenderProfileNotFound:
            return _user_participant(caller)

    async def candidate_ids(self, caller: Dict[str, Any]) -> List[str]:
        """Every id a counterpart may have used to address the caller."""
        ids = [caller["_id"]]
        if is_contractor(caller):
            contractor = await self._contractors.get_by_account(caller["_id"])
            if contractor:
                ids.append(contractor["_id"])
        return ids

    async def aliases(self, participant: ResolvedParticipant) -> List[str]:
        """Account id plus contractor profile id for one resolved participant."""
        ids = [participant.account_id]
        if participant.kind is ParticipantKind.CONTRACTOR:
            ids.append(participant.id)
        else:
            contractor = await self._contractors.get_by_account(participant.account_id)
            if contractor:
                ids.append(contractor["_id"])
        return ids
