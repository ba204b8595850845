import numpy as np
import pytest

from boqa.config import BOQAConfig
from boqa.datasets import internal_dataset, random_dataset
from boqa.engine import BOQA


@pytest.fixture(scope="session")
def toy_config():
    return BOQAConfig(
        num_workers=1,
        size_of_score_distribution=500,
        num_bins=200,
        max_query_size_for_cached_distribution=5,
    )


@pytest.fixture(scope="session")
def toy_boqa(toy_config):
    """Engine over the C1..C15 toy ontology (term index = C number - 1)."""
    dataset = internal_dataset()
    return BOQA(dataset.parents, dataset.annotations, toy_config, names=dataset.names)


@pytest.fixture(scope="session")
def random_boqa():
    """Engine over a seeded synthetic ontology with annotation frequencies."""
    dataset = random_dataset(80, 25, np.random.default_rng(3), max_terms_per_item=5)
    config = BOQAConfig(
        num_workers=1,
        size_of_score_distribution=300,
        num_bins=100,
        max_query_size_for_cached_distribution=4,
        max_frequency_terms=4,
    )
    return BOQA(dataset.parents, dataset.annotations, config)


@pytest.fixture
def rng():
    return np.random.default_rng(42)
