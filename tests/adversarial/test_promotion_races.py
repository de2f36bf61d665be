"""Adversarial tests: concurrent promotions into one environment.

In-process promotions of the same (application, environment) serialise
on ``EnvironmentLocks``; promoters that do not share a lock registry are
stopped by the slot claim before they change the target.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from pipewright.core.environment import EnvironmentLocks
from pipewright.core.promoter import EnvironmentPromoter
from pipewright.errors import ConcurrentPromotionError, PromotionError
from pipewright.models.promotion import PromotionRequest
from pipewright.platform.local import LocalPlatform

REVISIONS = ["1111111", "2222222", "3333333", "4444444"]


def _request(revision: str, target: str = "stage") -> PromotionRequest:
    return PromotionRequest(
        application="web", revision=revision, source_env="dev", target_env=target
    )


def _push_all(platform: LocalPlatform) -> None:
    for revision in REVISIONS:
        platform.push("dev", "web", revision, "sha256:" + revision * 9 + "0")


class OverlapCounter(LocalPlatform):
    """Counts promotions between their first delete and their slot commit."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.peak = 0
        self._counting = threading.Lock()

    def delete_deployment(self, namespace: str, application: str) -> bool:
        with self._counting:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        return super().delete_deployment(namespace, application)

    def commit_slot(self, namespace, application, **kwargs):
        try:
            return super().commit_slot(namespace, application, **kwargs)
        finally:
            with self._counting:
                self.active -= 1


class RendezvousPlatform(LocalPlatform):
    """Blocks ``create_deployment`` until ``parties`` callers arrive."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def create_deployment(self, namespace, application, image, revision):
        self.barrier.wait()
        return super().create_deployment(namespace, application, image, revision)


class InterleavingPlatform(LocalPlatform):
    """Runs ``hook`` once, right after the next rollout."""

    def __init__(self) -> None:
        super().__init__()
        self.hook = None

    def trigger_rollout(self, namespace: str, application: str):
        rolled = super().trigger_rollout(namespace, application)
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()
        return rolled


class SlotReadPlatform(LocalPlatform):
    """Runs ``hook`` once, right after the next slot read."""

    def __init__(self) -> None:
        super().__init__()
        self.hook = None

    def get_slot(self, namespace: str, application: str):
        slot = super().get_slot(namespace, application)
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()
        return slot


class TestSameEnvironment:
    def test_promotions_serialise(self):
        platform = OverlapCounter()
        _push_all(platform)
        promoter = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())

        with ThreadPoolExecutor(max_workers=len(REVISIONS)) as pool:
            records = list(pool.map(promoter.promote, [_request(r) for r in REVISIONS]))

        assert platform.peak == 1
        assert sorted(r.slot_version for r in records) == [1, 2, 3, 4]
        slot = platform.get_slot("stage", "web")
        last = max(records, key=lambda r: r.slot_version)
        assert slot.version == 4
        assert slot.revision == last.request.revision
        assert platform.get_deployment("stage", "web").revision == last.request.revision

    def test_exactly_one_deployment_survives(self):
        platform = OverlapCounter()
        _push_all(platform)
        promoter = EnvironmentPromoter(platform, platform)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(promoter.promote, [_request(r) for r in REVISIONS * 2]))

        resources = platform.list_resources("stage", "web")
        assert resources.deployment is not None
        assert resources.deployment.rollouts == 1
        assert resources.route.host == "web-stage.apps.local"
        assert platform.mutations_in("stage").count("create_route stage/web") == 1

    def test_lock_held_during_promotion(self):
        locks = EnvironmentLocks()
        platform = InterleavingPlatform()
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        promoter = EnvironmentPromoter(platform, platform, locks=locks)
        observed: list[bool] = []
        platform.hook = lambda: observed.append(locks.is_held("web", "stage"))

        promoter.promote(_request("a1b2c3d"))

        assert observed == [True]
        assert not locks.is_held("web", "stage")

    def test_busy_environment_times_out(self, ledger):
        platform = LocalPlatform()
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        locks = EnvironmentLocks(timeout=0.05)
        promoter = EnvironmentPromoter(platform, platform, locks=locks, ledger=ledger)

        with locks.hold("web", "stage"):
            with pytest.raises(ConcurrentPromotionError, match="in progress"):
                promoter.promote(_request("a1b2c3d"))

        assert platform.mutations_in("stage") == []
        (run_id,) = ledger.get_all_run_ids()
        (entry,) = ledger.get_run_entries(run_id)
        assert entry.state_transition == "requested->failed"

    def test_lock_released_after_failure(self):
        platform = LocalPlatform()
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        locks = EnvironmentLocks(timeout=0.5)
        promoter = EnvironmentPromoter(platform, platform, locks=locks)
        platform.inject_failure("trigger_rollout", times=1)

        with pytest.raises(PromotionError):
            promoter.promote(_request("a1b2c3d"))
        assert not locks.is_held("web", "stage")
        assert promoter.promote(_request("a1b2c3d")).slot_version == 1


class TestDifferentEnvironments:
    def test_distinct_targets_run_in_parallel(self):
        platform = RendezvousPlatform(parties=2)
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        promoter = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(promoter.promote, _request("a1b2c3d", target))
                for target in ("stage", "prod")
            ]
            records = [f.result() for f in futures]

        assert {r.image for r in records} == {"stage/web:a1b2c3d", "prod/web:a1b2c3d"}

    def test_other_key_not_blocked(self):
        platform = LocalPlatform()
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        locks = EnvironmentLocks(timeout=0.05)
        promoter = EnvironmentPromoter(platform, platform, locks=locks)

        with locks.hold("web", "stage"):
            record = promoter.promote(_request("a1b2c3d", "prod"))
        assert record.slot_version == 1


class TestSlotClaim:
    def test_stale_read_is_rejected_before_any_change(self, ledger):
        """The second promotion lands between the first's slot read and its claim."""
        platform = SlotReadPlatform()
        _push_all(platform)
        first = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks(), ledger=ledger)
        second = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        seen: list[int] = []

        def interleave():
            second.promote(_request("2222222"))
            seen.append(len(platform.mutations))

        platform.hook = interleave

        with pytest.raises(ConcurrentPromotionError, match="expected 0"):
            first.promote(_request("1111111"))

        assert len(platform.mutations) == seen[0]
        slot = platform.get_slot("stage", "web")
        assert slot.version == 1
        assert slot.revision == "2222222"
        assert slot.holder is None
        assert platform.get_deployment("stage", "web").revision == "2222222"
        assert platform.get_digest("stage", "web", "1111111") is None
        (run_id,) = ledger.get_all_run_ids()
        (entry,) = ledger.get_run_entries(run_id)
        assert entry.state_transition == "requested->failed"

    def test_claimed_slot_blocks_other_promoter(self):
        """A promoter with its own lock registry runs while the first holds the slot."""
        platform = InterleavingPlatform()
        _push_all(platform)
        first = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        second = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        errors: list[ConcurrentPromotionError] = []
        mutations_before: list[int] = []

        def interleave():
            mutations_before.append(len(platform.mutations))
            try:
                second.promote(_request("2222222"))
            except ConcurrentPromotionError as exc:
                errors.append(exc)

        platform.hook = interleave

        record = first.promote(_request("1111111"))

        assert len(errors) == 1
        assert "claimed by" in str(errors[0])
        assert platform.mutations[mutations_before[0]] == "commit_slot stage/web"
        assert record.slot_version == 1
        slot = platform.get_slot("stage", "web")
        assert slot.revision == "1111111"
        assert slot.holder is None
        assert platform.get_deployment("stage", "web").revision == "1111111"

    def test_retry_after_conflict_converges(self):
        platform = SlotReadPlatform()
        _push_all(platform)
        first = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        second = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        platform.hook = lambda: second.promote(_request("2222222"))

        with pytest.raises(ConcurrentPromotionError):
            first.promote(_request("1111111"))
        record = first.promote(_request("1111111"))

        assert record.slot_version == 2
        assert record.replaced_revision == "2222222"
        assert platform.get_slot("stage", "web").revision == "1111111"
        assert platform.get_deployment("stage", "web").revision == "1111111"

    def test_failed_promotion_releases_claim(self):
        platform = LocalPlatform()
        platform.push("dev", "web", "a1b2c3d", "sha256:" + "a" * 64)
        promoter = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        platform.inject_failure("trigger_rollout", times=1)

        with pytest.raises(PromotionError):
            promoter.promote(_request("a1b2c3d"))

        slot = platform.get_slot("stage", "web")
        assert slot.version == 0
        assert slot.holder is None
        other = EnvironmentPromoter(platform, platform, locks=EnvironmentLocks())
        assert other.promote(_request("a1b2c3d")).slot_version == 1
