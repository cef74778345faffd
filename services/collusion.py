# services/collusion.py
"""
Collusion pattern analysis over the current bid batch and bidder history.

Pairwise pricing similarity feeds a networkx similarity graph; strongly
connected groups of bids are the communities used for complementary-bidding
and market-segmentation checks. Rotation analysis works on each bidder's
historical win/loss records (oldest first).
"""

from dataclasses import dataclass, field
from itertools import combinations
from typing import List, Dict, Optional, Tuple

import networkx as nx

from config import EvaluationConfig
from models import Bid, PricedPosition, CollusionIndicator, HistoricalRecord, parse_datetime
from services import stats

IDENTICAL_PRICING = "IDENTICAL_PRICING"
ROTATION_PATTERN = "ROTATION_PATTERN"
COMPLEMENTARY_BIDDING = "COMPLEMENTARY_BIDDING"
PRICE_LEADERSHIP = "PRICE_LEADERSHIP"
BID_SUPPRESSION = "BID_SUPPRESSION"
COORDINATED_TIMING = "COORDINATED_TIMING"

INDICATOR_CONFIDENCE = {
    IDENTICAL_PRICING: 0.8,
    ROTATION_PATTERN: 0.7,
    COMPLEMENTARY_BIDDING: 0.6,
    PRICE_LEADERSHIP: 0.8,
    BID_SUPPRESSION: 0.7,
    COORDINATED_TIMING: 0.75
}

SIMILARITY_WEIGHTS = {
    "cosine": 0.4,
    "proportional": 0.3,
    "rounding": 0.15,
    "markup": 0.15
}

ROTATION_WEIGHTS = {
    "cyclic": 0.3,
    "regularIntervals": 0.25,
    "nonWinningRanks": 0.2,
    "groupRotation": 0.15,
    "priceConvergence": 0.1
}

ROTATION_WINDOW = 5
CONVERGENCE_RECORDS = 10
CONVERGENCE_WINDOW = 3
PRICE_CLUSTER_TOLERANCE = 0.1
LEADERSHIP_PRICE_BAND = 0.05
LEADERSHIP_SHARE = 0.3
SUPPRESSION_SHARE = 0.5


@dataclass
class CollusionFindings:
    """Per-bid indicators plus the batch-level artefacts they were derived from."""
    indicators: Dict[str, List[CollusionIndicator]]
    similarities: Dict[Tuple[str, str], float] = field(default_factory=dict)
    communities: List[List[str]] = field(default_factory=list)
    market_segmentation: List[dict] = field(default_factory=list)
    rotation: Dict[str, dict] = field(default_factory=dict)
    signals: Dict[str, bool] = field(default_factory=dict)


class CollusionAnalyzer:
    """Detect identical pricing, rotation, complementary bidding and related patterns."""

    def __init__(self, config: EvaluationConfig):
        self.config = config

    def analyze(
        self,
        bids: List[Bid],
        totals: Dict[str, float],
        histories: Optional[Dict[str, List[HistoricalRecord]]] = None,
        tender_records: Optional[Dict[str, List[HistoricalRecord]]] = None
    ) -> CollusionFindings:
        histories = histories or {}
        tender_records = tender_records or {}
        indicators: Dict[str, List[CollusionIndicator]] = {bid.id: [] for bid in bids}

        similarities = self.similarity_matrix(bids)
        for (id1, id2), similarity in similarities.items():
            if similarity > self.config.identical_pricing_threshold:
                indicators[id1].append(self._indicator(
                    IDENTICAL_PRICING, (id2,), f"Pricing similarity {similarity:.2f} with bid {id2}", similarity
                ))
                indicators[id2].append(self._indicator(
                    IDENTICAL_PRICING, (id1,), f"Pricing similarity {similarity:.2f} with bid {id1}", similarity
                ))

        rotation = {}
        for bid in bids:
            history = histories.get(bid.bidder_id)
            if bid.bidder_id not in rotation:
                rotation[bid.bidder_id] = self.rotation_analysis(
                    history, bids, tender_records.get(bid.bidder_id)
                )
            result = rotation[bid.bidder_id]
            if result["flagged"]:
                indicators[bid.id].append(self._indicator(
                    ROTATION_PATTERN, (),
                    f"Bid rotation pattern in bidder history (score {result['score']:.2f})",
                    result["score"]
                ))

        graph = self.build_similarity_graph(bids, similarities)
        communities = self.detect_communities(graph)
        clusters = self.price_clusters(bids, totals)

        for bid in bids:
            complementary = self.is_complementary(bid.id, clusters, communities)
            if complementary:
                community = self._member_of(bid.id, communities)
                indicators[bid.id].append(self._indicator(
                    COMPLEMENTARY_BIDDING, tuple(b for b in community if b != bid.id),
                    "Bid belongs to a coordinated pricing community with low segment overlap"
                ))

            overlap = self.market_overlap(bid, bids)
            if complementary or (overlap is not None and overlap < self.config.complementary_overlap_threshold):
                indicators[bid.id].extend(self.coverage_indicators(bid, bids, totals))

        return CollusionFindings(
            indicators=indicators,
            similarities=similarities,
            communities=communities,
            market_segmentation=self.market_segmentation(communities, totals),
            rotation=rotation,
            signals={
                "pricingSimilarity": len(bids) > 1,
                "rotation": any(r["available"] for r in rotation.values()),
                "coordinatedTiming": len(self._submission_times(bids)) >= 3
            }
        )

    # ==================== PRICING SIMILARITY ====================

    def similarity_matrix(self, bids: List[Bid]) -> Dict[Tuple[str, str], float]:
        return {
            (b1.id, b2.id): self.pricing_similarity(b1, b2)
            for b1, b2 in combinations(bids, 2)
        }

    def pricing_similarity(self, bid1: Bid, bid2: Bid) -> float:
        return self.similarity_components(bid1, bid2)["similarity"]

    def similarity_components(self, bid1: Bid, bid2: Bid) -> Dict[str, float]:
        """Weighted combination of cosine, proportional, rounding and markup sub-scores."""
        empty = {"cosine": 0.0, "proportional": 0.0, "rounding": 0.0, "markup": 0.0, "similarity": 0.0}
        positions1, positions2 = bid1.positions, bid2.positions
        if not positions1 or not positions2:
            return empty

        larger = max(len(positions1), len(positions2))
        if abs(len(positions1) - len(positions2)) / larger > 0.2:
            return empty

        by_id = {p.position_id: p for p in positions2}
        pairs = [(p, by_id[p.position_id]) for p in positions1 if p.position_id in by_id]
        if not pairs:
            return empty

        components = {
            "cosine": stats.cosine_similarity(
                [p1.unit_price for p1, _ in pairs],
                [p2.unit_price for _, p2 in pairs]
            ),
            "proportional": self.proportional_pricing(pairs),
            "rounding": self.rounding_similarity(positions1, positions2),
            "markup": self.markup_similarity(positions1, positions2)
        }
        components["similarity"] = sum(components[k] * w for k, w in SIMILARITY_WEIGHTS.items())
        return components

    @staticmethod
    def proportional_pricing(pairs: List[Tuple[PricedPosition, PricedPosition]]) -> float:
        """1 when unit prices follow a constant ratio, 0.5 when nearly so."""
        ratios = [p1.unit_price / p2.unit_price for p1, p2 in pairs if p1.unit_price > 0 and p2.unit_price > 0]
        if len(ratios) < 3:
            return 0.0

        cv = stats.coefficient_of_variation(ratios)
        if cv < 0.05:
            return 1.0
        if cv < 0.1:
            return 0.5
        return 0.0

    @staticmethod
    def rounding_pattern(positions) -> str:
        counts = {"nearest10": 0, "nearest5": 0, "nearest1": 0, "none": 0}
        for position in positions:
            price = position.unit_price
            if price % 10 == 0:
                counts["nearest10"] += 1
            elif price % 5 == 0:
                counts["nearest5"] += 1
            elif price % 1 == 0:
                counts["nearest1"] += 1
            else:
                counts["none"] += 1

        dominant = max(counts, key=counts.get)
        return dominant if counts[dominant] > len(positions) * 0.6 else "none"

    def rounding_similarity(self, positions1, positions2) -> float:
        pattern = self.rounding_pattern(positions1)
        if pattern != "none" and pattern == self.rounding_pattern(positions2):
            return 0.8
        return 0.0

    @staticmethod
    def markup_similarity(positions1, positions2) -> float:
        """Compare average markup over cost estimate; 0 when either side has no estimates."""
        markups1 = [(p.unit_price - p.cost_estimate) / p.cost_estimate for p in positions1 if p.cost_estimate]
        markups2 = [(p.unit_price - p.cost_estimate) / p.cost_estimate for p in positions2 if p.cost_estimate]
        if not markups1 or not markups2:
            return 0.0

        diff = abs(stats.mean(markups1) - stats.mean(markups2))
        if diff < 0.02:
            return 1.0
        if diff < 0.05:
            return 0.5
        return 0.0

    # ==================== ROTATION ====================

    def rotation_analysis(
        self,
        history: Optional[List[HistoricalRecord]],
        current_bids: List[Bid],
        tender_records: Optional[List[HistoricalRecord]] = None
    ) -> dict:
        """Score a bidder's win/loss history for bid-rotation behaviour.

        Group rotation needs every bidder's records from the same tenders
        (`tender_records`); with only the bidder's own history it is 0.
        """
        if not history or len(history) < self.config.rotation_min_records:
            return {"available": False, "score": 0.0, "components": {}, "flagged": False}

        windows = [
            tuple(1 if h.won else 0 for h in history[i:i + ROTATION_WINDOW])
            for i in range(len(history) - ROTATION_WINDOW + 1)
        ]

        components = {
            "cyclic": self.cyclic_pattern(windows),
            "regularIntervals": self.regular_win_intervals(history),
            "nonWinningRanks": self.non_winning_ranks(history),
            "groupRotation": self.group_rotation(tender_records or history, current_bids),
            "priceConvergence": self.price_convergence(history)
        }
        score = sum(components[k] * w for k, w in ROTATION_WEIGHTS.items())

        return {
            "available": True,
            "score": score,
            "components": components,
            "flagged": score > self.config.rotation_threshold
        }

    @staticmethod
    def cyclic_pattern(windows: List[tuple]) -> float:
        if not windows:
            return 0.0
        counts: Dict[tuple, int] = {}
        for window in windows:
            counts[window] = counts.get(window, 0) + 1
        return min(max(counts.values()) / len(windows), 1.0)

    @staticmethod
    def regular_win_intervals(history: List[HistoricalRecord]) -> float:
        wins = [i for i, h in enumerate(history) if h.won]
        if len(wins) < 2:
            return 0.0

        intervals = [b - a for a, b in zip(wins, wins[1:])]
        avg = stats.mean(intervals)
        sigma = stats.std_dev(intervals)
        if sigma < avg * 0.3:
            return 0.9
        if sigma < avg * 0.5:
            return 0.5
        return 0.0

    @staticmethod
    def non_winning_ranks(history: List[HistoricalRecord]) -> float:
        ranks = [h.rank for h in history if not h.won and h.rank]
        if len(ranks) < 3:
            return 0.0

        high_share = sum(1 for r in ranks if r <= 3) / len(ranks)
        return 0.8 if stats.mean(ranks) <= 3 and high_share > 0.7 else 0.0

    def group_rotation(self, history: List[HistoricalRecord], current_bids: List[Bid]) -> float:
        """Alternation rate of the winning price group across multi-bidder tender records."""
        if not current_bids:
            return 0.0

        groups = self.cluster_bidders(history)
        if len(groups) <= 1:
            return 0.0

        group_of = {bidder: i for i, group in enumerate(groups) for bidder in group["bidders"]}
        last_group = None
        alternations = 0
        wins = 0
        for record in history:
            if not record.won:
                continue
            wins += 1
            group = group_of.get(record.winner_id or record.bidder_id, -1)
            if last_group is not None and group != last_group:
                alternations += 1
            last_group = group

        return alternations / wins if wins else 0.0

    @staticmethod
    def cluster_bidders(history: List[HistoricalRecord]) -> List[dict]:
        prices: Dict[str, List[float]] = {}
        for record in history:
            if record.total_price is not None:
                prices.setdefault(record.bidder_id, []).append(record.total_price)

        groups: List[dict] = []
        for bidder_id, bidder_prices in prices.items():
            avg = stats.mean(bidder_prices)
            for group in groups:
                if group["avgPrice"] and abs(avg - group["avgPrice"]) / group["avgPrice"] < PRICE_CLUSTER_TOLERANCE:
                    group["bidders"].append(bidder_id)
                    n = len(group["bidders"])
                    group["avgPrice"] = (group["avgPrice"] * (n - 1) + avg) / n
                    break
            else:
                groups.append({"bidders": [bidder_id], "avgPrice": avg})
        return groups

    @staticmethod
    def price_convergence(history: List[HistoricalRecord]) -> float:
        """Share of sliding windows whose normalised price variance keeps falling."""
        recent = [h.total_price for h in history[-CONVERGENCE_RECORDS:] if h.total_price is not None]
        if len(recent) < 5:
            return 0.0

        variances = []
        for i in range(len(recent) - CONVERGENCE_WINDOW + 1):
            window = recent[i:i + CONVERGENCE_WINDOW]
            avg = stats.mean(window)
            variances.append(stats.variance(window) / (avg * avg) if avg else 0.0)

        decreasing = sum(1 for a, b in zip(variances, variances[1:]) if b < a)
        return decreasing / len(variances)

    # ==================== GRAPH / COMMUNITIES ====================

    def build_similarity_graph(
        self,
        bids: List[Bid],
        similarities: Dict[Tuple[str, str], float]
    ) -> nx.Graph:
        graph = nx.Graph()
        for bid in bids:
            graph.add_node(bid.id, bidder_id=bid.bidder_id)
        for (id1, id2), similarity in similarities.items():
            if similarity > self.config.graph_edge_threshold:
                graph.add_edge(id1, id2, weight=similarity)
        return graph

    def detect_communities(self, graph: nx.Graph) -> List[List[str]]:
        """Group bids reachable over strong edges; every bid lands in exactly one community."""
        strong = nx.Graph()
        strong.add_nodes_from(graph.nodes)
        strong.add_edges_from(
            (u, v) for u, v, weight in graph.edges(data="weight")
            if weight > self.config.community_edge_threshold
        )

        order = {node: i for i, node in enumerate(graph.nodes)}
        communities = [sorted(c, key=order.get) for c in nx.connected_components(strong)]
        return sorted(communities, key=lambda c: order[c[0]])

    @staticmethod
    def price_clusters(bids: List[Bid], totals: Dict[str, float]) -> List[List[str]]:
        """Group bids whose totals lie within 10% of the running cluster average."""
        clusters: List[dict] = []
        for bid in bids:
            total = totals.get(bid.id, 0.0)
            for cluster in clusters:
                if cluster["avg"] and abs(total - cluster["avg"]) / cluster["avg"] < PRICE_CLUSTER_TOLERANCE:
                    cluster["members"].append(bid.id)
                    n = len(cluster["members"])
                    cluster["avg"] = (cluster["avg"] * (n - 1) + total) / n
                    break
            else:
                clusters.append({"members": [bid.id], "avg": total})
        return [c["members"] for c in clusters]

    def is_complementary(
        self,
        bid_id: str,
        clusters: List[List[str]],
        communities: List[List[str]]
    ) -> bool:
        cluster = self._member_of(bid_id, clusters)
        community = self._member_of(bid_id, communities)
        if not cluster or not community:
            return False

        overlap = stats.jaccard(set(cluster), set(community))
        return overlap < self.config.complementary_overlap_threshold and len(community) > 2

    @staticmethod
    def market_overlap(bid: Bid, bids: List[Bid]) -> Optional[float]:
        """Average category overlap with the other bids; None without categories or competitors."""
        segments = {p.category for p in bid.positions if p.category}
        if not segments:
            return None

        overlaps = []
        for other in bids:
            if other.id == bid.id:
                continue
            other_segments = {p.category for p in other.positions if p.category}
            overlaps.append(stats.jaccard(segments, other_segments) if other_segments else 0.0)
        return stats.mean(overlaps) if overlaps else None

    def market_segmentation(self, communities: List[List[str]], totals: Dict[str, float]) -> List[dict]:
        segments = []
        for index, community in enumerate(communities):
            prices = [totals.get(bid_id, 0.0) for bid_id in community]
            segments.append({
                "segmentId": f"segment_{index}",
                "bidIds": list(community),
                "bidderCount": len(community),
                "avgPrice": stats.mean(prices),
                "priceRange": {"min": min(prices), "max": max(prices)},
                "concentration": self.herfindahl_index(prices)
            })
        return segments

    @staticmethod
    def herfindahl_index(prices: List[float]) -> float:
        """HHI over percentage shares, normalised to 0-1."""
        total = sum(prices)
        if total == 0:
            return 0.0
        return sum(((p / total) * 100) ** 2 for p in prices) / 10000

    # ==================== COVERAGE INDICATORS ====================

    def coverage_indicators(
        self,
        bid: Bid,
        bids: List[Bid],
        totals: Dict[str, float]
    ) -> List[CollusionIndicator]:
        found = []
        followers = self.price_followers(bid, bids, totals)
        if len(followers) > len(bids) * LEADERSHIP_SHARE:
            found.append(self._indicator(
                PRICE_LEADERSHIP, tuple(followers), "Later bids converge on this bid's price"
            ))
        if self.bid_suppression(bids):
            found.append(self._indicator(
                BID_SUPPRESSION, (),
                f"Only {len({b.bidder_id for b in bids})} distinct bidders against "
                f"{self.config.expected_bidders} expected"
            ))
        if self.coordinated_timing(bids):
            found.append(self._indicator(
                COORDINATED_TIMING, (), "Submission times are spaced suspiciously evenly"
            ))
        return found

    def price_followers(self, bid: Bid, bids: List[Bid], totals: Dict[str, float]) -> List[str]:
        price = totals.get(bid.id, 0.0)
        if not price:
            return []
        bid_time = self._timestamp(bid.submission_time) or 0.0

        followers = []
        for other in bids:
            other_time = self._timestamp(other.submission_time)
            if other_time is None or other_time <= bid_time:
                continue
            if abs(totals.get(other.id, 0.0) - price) / price < LEADERSHIP_PRICE_BAND:
                followers.append(other.id)
        return followers

    def bid_suppression(self, bids: List[Bid]) -> bool:
        distinct = len({b.bidder_id for b in bids})
        return distinct < self.config.expected_bidders * SUPPRESSION_SHARE

    def coordinated_timing(self, bids: List[Bid]) -> bool:
        times = self._submission_times(bids)
        if len(times) < 3:
            return False

        gaps = [b - a for a, b in zip(times, times[1:])]
        avg = stats.mean(gaps)
        return stats.variance(gaps) < avg * avg * 0.1

    # ==================== HELPERS ====================

    def _submission_times(self, bids: List[Bid]) -> List[float]:
        times = (self._timestamp(b.submission_time) for b in bids)
        return sorted(t for t in times if t)

    @staticmethod
    def _timestamp(value) -> Optional[float]:
        try:
            parsed = parse_datetime(value)
        except ValueError:
            return None
        return parsed.timestamp() if parsed else None

    @staticmethod
    def _member_of(bid_id: str, groups: List[List[str]]) -> List[str]:
        return next((g for g in groups if bid_id in g), [])

    @staticmethod
    def _indicator(indicator_type: str, related, detail: str, score: float = None) -> CollusionIndicator:
        return CollusionIndicator(
            type=indicator_type,
            confidence=INDICATOR_CONFIDENCE[indicator_type],
            related_bids=tuple(related),
            detail=detail,
            score=score
        )
