"""Randomized, degree-bounded peer assignment."""

import logging
import random
from typing import Dict, Iterable, List, Optional

from .models import UNLIMITED_PEERS, ParticipantId, PeerCount, PeerGraph

LOG = logging.getLogger(__name__)


class PeerGraphBuilder:
    """Builds who-reviews-whom graphs for a cohort.

    Every participant gets ``peer_count`` distinct reviewees other than
    themselves whenever the cohort is larger than ``peer_count``. The
    assignment is roughly even; pairs are not forced to be symmetric and
    in-degree is not balanced.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def build(
        self,
        participants: Iterable[ParticipantId],
        peer_count: PeerCount
    ) -> Dict[ParticipantId, List[ParticipantId]]:
        """
        Assign peers to every participant.

        Args:
            participants: Participant ids; duplicates are collapsed
            peer_count: Reviewees per participant, or UNLIMITED_PEERS

        Returns:
            Mapping of reviewer id to the list of reviewee ids assigned to them

        Raises:
            ValueError: If peer_count is negative or not an integer
        """
        _check_peer_count(peer_count)
        user_ids = list(dict.fromkeys(participants))
        peers: Dict[ParticipantId, List[ParticipantId]] = {user_id: [] for user_id in user_ids}

        if peer_count == UNLIMITED_PEERS or len(user_ids) <= peer_count:
            if peer_count != UNLIMITED_PEERS and user_ids:
                LOG.info(
                    "Only %d participants for %d peers each, assigning everyone",
                    len(user_ids), peer_count
                )
            return self._saturate(user_ids)

        shuffled = list(user_ids)
        self.rng.shuffle(shuffled)

        for round_number in range(peer_count):
            needing_peers = [u for u in shuffled if len(peers[u]) < peer_count]
            self.rng.shuffle(needing_peers)

            for user_id in needing_peers:
                candidates = [u for u in shuffled if u != user_id]
                self.rng.shuffle(candidates)
                peer = next((c for c in candidates if c not in peers[user_id]), None)
                if peer is None:
                    LOG.warning(
                        "Could not assign a peer to %s in round %d, current peers: %s",
                        user_id, round_number, peers[user_id]
                    )
                    continue
                peers[user_id].append(peer)

        self._repair(user_ids, peers, peer_count)
        return peers

    def build_graph(self, participants: Iterable[ParticipantId], peer_count: PeerCount) -> PeerGraph:
        return PeerGraph(assignments=self.build(participants, peer_count))

    @staticmethod
    def _saturate(user_ids: List[ParticipantId]) -> Dict[ParticipantId, List[ParticipantId]]:
        return {user_id: [u for u in user_ids if u != user_id] for user_id in user_ids}

    def _repair(
        self,
        user_ids: List[ParticipantId],
        peers: Dict[ParticipantId, List[ParticipantId]],
        peer_count: int
    ):
        """Top up anyone the rounds left short; shortfall is logged, not raised."""
        for user_id in user_ids:
            while len(peers[user_id]) < peer_count:
                remaining = [u for u in user_ids if u != user_id and u not in peers[user_id]]
                if not remaining:
                    LOG.warning(
                        "%s only has %d peers but needs %d (%d participants)",
                        user_id, len(peers[user_id]), peer_count, len(user_ids)
                    )
                    break
                peers[user_id].append(self.rng.choice(remaining))


def build_peer_graph(
    participants: Iterable[ParticipantId],
    peer_count: PeerCount,
    rng: Optional[random.Random] = None
) -> Dict[ParticipantId, List[ParticipantId]]:
    """Convenience wrapper around PeerGraphBuilder.build."""
    return PeerGraphBuilder(rng).build(participants, peer_count)


def _check_peer_count(peer_count: PeerCount):
    if peer_count == UNLIMITED_PEERS:
        return
    if isinstance(peer_count, bool) or not isinstance(peer_count, int):
        raise ValueError(f"Peer count must be an integer or {UNLIMITED_PEERS!r}, got {peer_count!r}")
    if peer_count < 0:
        raise ValueError(f"Peer count must not be negative, got {peer_count}")
