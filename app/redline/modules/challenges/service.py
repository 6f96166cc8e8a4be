from __future__ import annotations

from typing import TYPE_CHECKING

from app.redline.audit import log_user_action, record_event
from app.redline.db import flush_or_conflict
from app.redline.errors import BadRequest, Conflict, Forbidden, NotFound, ValidationFailed
from app.redline.models import User, utcnow
from app.redline.permissions import is_site_admin, load_club_access
from app.redline.utils import keyset_page
from app.redline.validation import (
    bool_field,
    choice_field,
    datetime_field,
    float_field,
    location_field,
    text_field,
)
from app.redline.modules.challenges.models import Challenge, ChallengeParticipant, LeaderboardEntry

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


CHALLENGE_TYPES = ("TIME_TRIAL", "DISTANCE", "FUEL_EFFICIENCY", "PHOTO_CONTEST", "CUSTOM")
DIFFICULTIES = ("EASY", "MEDIUM", "HARD", "EXPERT")
LEADERBOARD_SCOPES = ("GLOBAL", "CITY", "TERRITORY", "CLUB")
# Lower is better for these types; every other type ranks higher scores first.
ASCENDING_TYPES = frozenset({"TIME_TRIAL"})


def lower_is_better(challenge_type: str) -> bool:
    return challenge_type in ASCENDING_TYPES


def rank_scores(scores: list[float], *, ascending: bool) -> list[int]:
    """
    Competition ranks ("1, 1, 3") for ``scores`` in their given order.

    >>> rank_scores([10, 30, 30, 20], ascending=False)
    [4, 1, 1, 3]
    """
    ordered = sorted(scores) if ascending else sorted(scores, reverse=True)
    first_rank: dict[float, int] = {}
    for i, value in enumerate(ordered, start=1):
        first_rank.setdefault(value, i)
    return [first_rank[v] for v in scores]


def validate_challenge_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    text_field(payload, "title", errors, label="Title", min_len=1, max_len=200)
    text_field(payload, "description", errors, label="Description", min_len=1, max_len=2000)
    if payload.get("type") not in CHALLENGE_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(CHALLENGE_TYPES)}")
    if payload.get("difficulty") not in DIFFICULTIES:
        errors.append(f"Invalid difficulty. Must be one of: {', '.join(DIFFICULTIES)}")
    return errors


def _get_challenge(s: "Session", challenge_id: str) -> Challenge:
    challenge = s.get(Challenge, challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")
    return challenge


def _ensure_viewable(s: "Session", challenge: Challenge, user: User | None) -> None:
    if challenge.club_id and not load_club_access(s, challenge.club_id, user).can_view():
        raise Forbidden("You must be a member to view this club challenge")


def _ensure_open(challenge: Challenge) -> None:
    if not challenge.is_active:
        raise BadRequest("Challenge is not active")
    if challenge.end_date is not None and challenge.end_date < utcnow():
        raise BadRequest("Challenge has ended")


def create_challenge(s: "Session", payload: dict, user: User) -> Challenge:
    errors = validate_challenge_payload(payload)
    city = location_field(payload, "city", errors, label="City")
    territory = location_field(payload, "territory", errors, label="Territory")
    is_global = bool_field(payload, "is_global", errors, default=False)
    is_active = bool_field(payload, "is_active", errors, default=True)
    start_date = datetime_field(payload, "start_date", errors, label="Start date")
    end_date = datetime_field(payload, "end_date", errors, label="End date")
    parameters = payload.get("parameters")
    if parameters is not None and not isinstance(parameters, dict):
        errors.append("parameters must be an object.")
    if start_date and end_date and end_date <= start_date:
        errors.append("End date must be after start date.")
    club_id = payload.get("club_id") or None
    if club_id is not None and not isinstance(club_id, str):
        errors.append("club_id must be a string.")
    is_pre_made = bool_field(payload, "is_pre_made", errors, default=False)
    if errors:
        raise ValidationFailed(errors)

    if club_id:
        load_club_access(s, club_id, user).require_role("MODERATOR")

    now = utcnow()
    challenge = Challenge(
        title=payload["title"].strip(),
        description=payload["description"].strip(),
        type=payload["type"],
        difficulty=payload["difficulty"],
        is_pre_made=bool(is_pre_made),
        city=city,
        territory=territory,
        is_global=bool(is_global),
        parameters=parameters,
        club_id=club_id,
        creator_id=user.id,
        is_active=bool(is_active),
        start_date=start_date,
        end_date=end_date,
        created_at=now,
        updated_at=now,
    )
    s.add(challenge)
    s.flush()
    log_user_action(
        s,
        "challenge.created",
        user,
        resource_type="challenge",
        resource_id=challenge.id,
        metadata={"club_id": club_id, "type": challenge.type},
    )
    return challenge


def sorted_participants(challenge: Challenge, participants: list[ChallengeParticipant]) -> list[ChallengeParticipant]:
    """Best score first; participants without a result last, in join order."""
    scored = [p for p in participants if p.score is not None]
    unscored = sorted((p for p in participants if p.score is None), key=lambda p: p.created_at)
    scored.sort(key=lambda p: p.score, reverse=not lower_is_better(challenge.type))
    return scored + unscored


def get_challenge(s: "Session", challenge_id: str, user: User | None) -> dict:
    challenge = _get_challenge(s, challenge_id)
    _ensure_viewable(s, challenge, user)
    participants = sorted_participants(challenge, list(challenge.participants))
    mine = None
    if user is not None:
        mine = next((p for p in participants if p.user_id == user.id), None)
    return {
        **challenge.to_dict(),
        "participants": [p.to_dict() for p in participants],
        "participant_count": len(participants),
        "user_participation": mine.to_dict() if mine else None,
    }


def get_pre_made(
    s: "Session",
    *,
    challenge_type: str | None = None,
    difficulty: str | None = None,
    city: str | None = None,
    territory: str | None = None,
    limit: int = 20,
    cursor: str | None = None,
) -> dict:
    errors: list[str] = []
    filters = {"type": challenge_type, "difficulty": difficulty}
    choice_field(filters, "type", errors, CHALLENGE_TYPES)
    choice_field(filters, "difficulty", errors, DIFFICULTIES)
    if errors:
        raise ValidationFailed(errors)
    q = s.query(Challenge).filter(Challenge.is_pre_made.is_(True), Challenge.is_active.is_(True))
    if challenge_type:
        q = q.filter(Challenge.type == challenge_type)
    if difficulty:
        q = q.filter(Challenge.difficulty == difficulty)
    if city:
        q = q.filter(Challenge.city == city)
    if territory:
        q = q.filter(Challenge.territory == territory)
    items, next_cursor = keyset_page(s, q, Challenge, cursor=cursor, limit=limit)
    return {"items": [c.to_dict() for c in items], "next_cursor": next_cursor}


def participate(s: "Session", challenge_id: str, user: User) -> ChallengeParticipant:
    challenge = _get_challenge(s, challenge_id)
    _ensure_open(challenge)
    if challenge.club_id:
        load_club_access(s, challenge.club_id, user).require_member("You must be a club member to join this challenge")
    existing = (
        s.query(ChallengeParticipant)
        .filter(ChallengeParticipant.challenge_id == challenge.id, ChallengeParticipant.user_id == user.id)
        .one_or_none()
    )
    if existing:
        raise Conflict("Already participating in this challenge")

    participant = ChallengeParticipant(challenge_id=challenge.id, user_id=user.id, created_at=utcnow())
    s.add(participant)
    flush_or_conflict(s, "Already participating in this challenge")
    log_user_action(s, "challenge.joined", user, resource_type="challenge", resource_id=challenge.id, severity="LOW")
    return participant


def leaderboard_scopes(challenge: Challenge) -> list[tuple[str, str]]:
    scopes = [("GLOBAL", "")]
    if challenge.city:
        scopes.append(("CITY", challenge.city))
    if challenge.territory:
        scopes.append(("TERRITORY", challenge.territory))
    if challenge.club_id:
        scopes.append(("CLUB", challenge.club_id))
    return scopes


def _rerank(s: "Session", challenge: Challenge, scope: str, scope_value: str) -> None:
    entries = (
        s.query(LeaderboardEntry)
        .filter(
            LeaderboardEntry.challenge_id == challenge.id,
            LeaderboardEntry.scope == scope,
            LeaderboardEntry.scope_value == scope_value,
        )
        .all()
    )
    ranks = rank_scores([e.score for e in entries], ascending=lower_is_better(challenge.type))
    for entry, rank in zip(entries, ranks):
        entry.rank = rank


def update_leaderboards(s: "Session", challenge: Challenge, user_id: str, score: float) -> list[LeaderboardEntry]:
    """Upsert the user's entry in every scope the challenge belongs to and recompute ranks there."""
    now = utcnow()
    out = []
    for scope, scope_value in leaderboard_scopes(challenge):
        entry = (
            s.query(LeaderboardEntry)
            .filter(
                LeaderboardEntry.challenge_id == challenge.id,
                LeaderboardEntry.user_id == user_id,
                LeaderboardEntry.scope == scope,
                LeaderboardEntry.scope_value == scope_value,
            )
            .one_or_none()
        )
        if entry is None:
            entry = LeaderboardEntry(
                challenge_id=challenge.id,
                user_id=user_id,
                scope=scope,
                scope_value=scope_value,
                score=score,
                created_at=now,
            )
            s.add(entry)
        entry.score = score
        entry.updated_at = now
        s.flush()
        _rerank(s, challenge, scope, scope_value)
        out.append(entry)
    s.flush()
    return out


def submit_result(s: "Session", challenge_id: str, payload: dict, user: User) -> ChallengeParticipant:
    challenge = _get_challenge(s, challenge_id)
    participant = (
        s.query(ChallengeParticipant)
        .filter(ChallengeParticipant.challenge_id == challenge.id, ChallengeParticipant.user_id == user.id)
        .one_or_none()
    )
    if not participant:
        raise NotFound("You are not participating in this challenge")
    _ensure_open(challenge)

    errors: list[str] = []
    score = float_field(payload, "score", errors, lo=0)
    if score is None and not errors:
        errors.append("score is required.")
    evidence = payload.get("evidence")
    if evidence is not None and not isinstance(evidence, dict):
        errors.append("evidence must be an object.")
    if errors:
        raise ValidationFailed(errors)

    participant.score = score
    participant.evidence = evidence
    participant.completed_at = utcnow()
    update_leaderboards(s, challenge, user.id, score)
    log_user_action(
        s,
        "challenge.result_submitted",
        user,
        resource_type="challenge",
        resource_id=challenge.id,
        severity="LOW",
        metadata={"score": score},
    )
    return participant


def get_leaderboard(
    s: "Session",
    challenge_id: str,
    user: User | None,
    *,
    scope: str = "GLOBAL",
    scope_value: str | None = None,
    limit: int = 20,
) -> dict:
    challenge = _get_challenge(s, challenge_id)
    _ensure_viewable(s, challenge, user)
    if scope not in LEADERBOARD_SCOPES:
        raise BadRequest(f"Invalid scope. Must be one of: {', '.join(LEADERBOARD_SCOPES)}")
    if scope_value is None:
        scope_value = dict(leaderboard_scopes(challenge)).get(scope, "")
    if scope == "GLOBAL":
        scope_value = ""
    entries = (
        s.query(LeaderboardEntry)
        .filter(
            LeaderboardEntry.challenge_id == challenge.id,
            LeaderboardEntry.scope == scope,
            LeaderboardEntry.scope_value == scope_value,
        )
        .order_by(LeaderboardEntry.rank.asc(), LeaderboardEntry.updated_at.asc())
        .limit(limit)
        .all()
    )
    return {
        "challenge_id": challenge.id,
        "scope": scope,
        "scope_value": scope_value or None,
        "lower_is_better": lower_is_better(challenge.type),
        "entries": [e.to_dict() for e in entries],
    }


def get_my_progress(s: "Session", user: User) -> list[dict]:
    rows = (
        s.query(ChallengeParticipant)
        .filter(ChallengeParticipant.user_id == user.id)
        .order_by(ChallengeParticipant.created_at.desc())
        .all()
    )
    return [{**p.to_dict(), "challenge": p.challenge.to_dict()} for p in rows]


def get_club_challenges(s: "Session", club_id: str, user: User | None) -> list[Challenge]:
    if not load_club_access(s, club_id, user).can_view():
        raise Forbidden("You must be a member to view this club's challenges")
    return (
        s.query(Challenge)
        .filter(Challenge.club_id == club_id, Challenge.is_active.is_(True))
        .order_by(Challenge.created_at.desc(), Challenge.id.desc())
        .all()
    )


def delete_challenge(s: "Session", challenge_id: str, user: User) -> None:
    challenge = _get_challenge(s, challenge_id)
    is_creator = challenge.creator_id == user.id
    if not is_creator:
        if challenge.club_id:
            load_club_access(s, challenge.club_id, user).require("challenges:delete_any")
        elif not is_site_admin(user.site_role):
            raise Forbidden("Only the creator or a site admin can delete this challenge")
    record_event(
        s,
        action="challenge.deleted",
        user=user,
        resource_type="challenge",
        resource_id=challenge.id,
        category="USER_ACTION" if is_creator else "MODERATION",
        metadata={"club_id": challenge.club_id, "title": challenge.title},
    )
    s.delete(challenge)
    s.flush()
