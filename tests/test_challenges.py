import asyncio

import pytest

from authgate.service.challenges import (
    ChallengeExhausted,
    ChallengeMismatch,
    ChallengeNotFound,
    ConsumeResult,
    SecondFactorChallenges,
)
from authgate.service.credentials import ChallengeId, Email, TwoFactorCode


def _wrong_code(code: TwoFactorCode) -> TwoFactorCode:
    return TwoFactorCode.parse(str((int(code.expose()) + 1) % 1_000_000).zfill(6))


async def test_issue_then_consume_once(memory_store, alice):
    service = SecondFactorChallenges(memory_store, ttl_seconds=600)
    challenge = await service.issue(alice)
    await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)
    assert await memory_store.get_challenge(alice) is None
    with pytest.raises(ChallengeNotFound):
        await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)


async def test_wrong_code_keeps_challenge_pending(memory_store, alice):
    service = SecondFactorChallenges(memory_store, ttl_seconds=600, max_attempts=5)
    challenge = await service.issue(alice)
    with pytest.raises(ChallengeMismatch):
        await service.verify_and_consume(alice, challenge.challenge_id, _wrong_code(challenge.code))
    pending = await memory_store.get_challenge(alice)
    assert pending is not None
    assert pending.attempts == 1
    await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)


async def test_wrong_challenge_id_is_mismatch(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    challenge = await service.issue(alice)
    with pytest.raises(ChallengeMismatch):
        await service.verify_and_consume(alice, ChallengeId.new(), challenge.code)


async def test_new_challenge_supersedes_previous(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    first = await service.issue(alice)
    second = await service.issue(alice)
    with pytest.raises(ChallengeMismatch):
        await service.verify_and_consume(alice, first.challenge_id, first.code)
    await service.verify_and_consume(alice, second.challenge_id, second.code)


async def test_challenges_are_per_email(memory_store, alice):
    bob = Email.parse("bob@example.com")
    service = SecondFactorChallenges(memory_store)
    for_alice = await service.issue(alice)
    with pytest.raises(ChallengeNotFound):
        await service.verify_and_consume(bob, for_alice.challenge_id, for_alice.code)
    await service.verify_and_consume(alice, for_alice.challenge_id, for_alice.code)


async def test_expired_challenge_not_found(memory_store, clock, alice):
    service = SecondFactorChallenges(memory_store, ttl_seconds=600)
    challenge = await service.issue(alice)
    clock.advance(599)
    assert await memory_store.get_challenge(alice) is not None
    clock.advance(1)
    with pytest.raises(ChallengeNotFound):
        await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)


async def test_exhausted_after_max_attempts(memory_store, alice):
    service = SecondFactorChallenges(memory_store, max_attempts=3)
    challenge = await service.issue(alice)
    wrong = _wrong_code(challenge.code)
    for _ in range(2):
        with pytest.raises(ChallengeMismatch):
            await service.verify_and_consume(alice, challenge.challenge_id, wrong)
    with pytest.raises(ChallengeExhausted):
        await service.verify_and_consume(alice, challenge.challenge_id, wrong)
    with pytest.raises(ChallengeNotFound):
        await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)


async def test_concurrent_consumers_single_winner(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    challenge = await service.issue(alice)
    results = await asyncio.gather(
        *(
            memory_store.consume_challenge(alice, challenge.challenge_id, challenge.code, 5)
            for _ in range(10)
        )
    )
    assert results.count(ConsumeResult.OK) == 1
    assert results.count(ConsumeResult.NOT_FOUND) == 9


async def test_concurrent_issue_leaves_exactly_one(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    issued = await asyncio.gather(*(service.issue(alice) for _ in range(10)))
    pending = await memory_store.get_challenge(alice)
    assert pending is not None
    winners = [c for c in issued if c.challenge_id == pending.challenge_id]
    assert len(winners) == 1
    outcomes = []
    for candidate in issued:
        outcomes.append(
            await memory_store.consume_challenge(alice, candidate.challenge_id, candidate.code, 100)
        )
    assert outcomes.count(ConsumeResult.OK) == 1


async def test_clear_removes_pending(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    challenge = await service.issue(alice)
    await service.clear(alice)
    with pytest.raises(ChallengeNotFound):
        await service.verify_and_consume(alice, challenge.challenge_id, challenge.code)


def test_rejects_non_positive_settings(memory_store):
    with pytest.raises(ValueError):
        SecondFactorChallenges(memory_store, ttl_seconds=0)
    with pytest.raises(ValueError):
        SecondFactorChallenges(memory_store, max_attempts=0)


async def test_memory_store_rejects_non_positive_ttl(memory_store, alice):
    service = SecondFactorChallenges(memory_store)
    challenge = await service.issue(alice)
    with pytest.raises(ValueError):
        await memory_store.put_challenge(challenge, 0)
    with pytest.raises(ValueError):
        await memory_store.revoke("jti", 0)
