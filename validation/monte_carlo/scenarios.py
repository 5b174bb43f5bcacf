"""Correlation regimes for Monte Carlo scenarios."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Tuple
import math
import numpy as np


class ScenarioType(Enum):
    NORMAL = "normal"
    STRESS_INTRA_CORR = "stress_intra_corr"
    STRESS_INTER_CORR = "stress_inter_corr"
    BLACK_SWAN = "black_swan"


# (share of scenarios, intra-cluster rho range, inter-cluster rho range).
# BLACK_SWAN takes whatever the floored shares leave over.
REGIMES: Dict[ScenarioType, Tuple[float, Tuple[float, float], Tuple[float, float]]] = {
    ScenarioType.NORMAL: (0.5, (0.30, 0.60), (0.10, 0.20)),
    ScenarioType.STRESS_INTRA_CORR: (0.2, (0.60, 0.85), (0.15, 0.30)),
    ScenarioType.STRESS_INTER_CORR: (0.2, (0.50, 0.80), (0.20, 0.50)),
    ScenarioType.BLACK_SWAN: (0.0, (0.75, 0.85), (0.40, 0.50)),
}


@dataclass(frozen=True)
class ScenarioConfig:
    scenario_type: ScenarioType
    intra_cluster_correlation: float
    inter_cluster_correlation: float

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['scenario_type'] = self.scenario_type.value
        return data


def regime_counts(num_scenarios: int) -> Dict[ScenarioType, int]:
    """Scenario count per regime: floored shares, remainder to black swan."""
    counts = {
        regime: int(math.floor(num_scenarios * share))
        for regime, (share, _, _) in REGIMES.items()
        if regime != ScenarioType.BLACK_SWAN
    }
    counts[ScenarioType.BLACK_SWAN] = num_scenarios - sum(counts.values())
    return counts


def generate_scenario_configs(num_scenarios: int, rng: np.random.Generator) -> List[ScenarioConfig]:
    """Draw ``num_scenarios`` regime configs and return them in shuffled order."""
    if num_scenarios < 1:
        raise ValueError(f"num_scenarios must be >= 1, got {num_scenarios}")

    configs: List[ScenarioConfig] = []
    for regime, count in regime_counts(num_scenarios).items():
        _, (intra_lo, intra_hi), (inter_lo, inter_hi) = REGIMES[regime]
        intra = rng.uniform(intra_lo, intra_hi, size=count)
        inter = rng.uniform(inter_lo, inter_hi, size=count)
        configs.extend(ScenarioConfig(regime, float(a), float(b)) for a, b in zip(intra, inter))

    order = rng.permutation(len(configs))
    return [configs[i] for i in order]
