import pytest
from datetime import timedelta
from crm_agent.data import scoring
from crm_agent.data.patterns import utc_now


def test_success_rate():
    assert scoring.success_rate(8, 10) == 0.8
    assert scoring.success_rate(0, 0) == 0.0


def test_usage_bonus_capped():
    assert scoring.usage_bonus(0) == 0.0
    assert scoring.usage_bonus(1) == pytest.approx(0.1)
    assert scoring.usage_bonus(500) == pytest.approx(0.1)


def test_recency_bonus_windows():
    now = utc_now()
    assert scoring.recency_bonus(now - timedelta(days=2), now) == 0.05
    assert scoring.recency_bonus(now - timedelta(days=20), now) == 0.02
    assert scoring.recency_bonus(now - timedelta(days=45), now) == 0.0
    assert scoring.recency_bonus(None, now) == 0.0


def test_confidence_formula(pattern_factory):
    fresh = pattern_factory(success_rate=0.8, total=10)
    assert scoring.compute_confidence(fresh) == pytest.approx(0.95)

    month_old = pattern_factory(success_rate=0.5, total=2, age_days=20)
    assert scoring.compute_confidence(month_old) == pytest.approx(0.5 + 0.1 + 0.02)

    stale = pattern_factory(success_rate=0.5, total=2, age_days=60)
    assert scoring.compute_confidence(stale) == pytest.approx(0.6)


def test_confidence_bounded(pattern_factory):
    for rate in (0.0, 0.3, 0.95, 1.0):
        for age in (0, 10, 400):
            confidence = scoring.compute_confidence(pattern_factory(success_rate=rate, total=20, age_days=age))
            assert 0.0 <= confidence <= 1.0
    assert scoring.compute_confidence(pattern_factory(success_rate=1.0, total=20)) == 1.0


def test_eviction_rules(pattern_factory):
    assert scoring.should_evict(pattern_factory(success_rate=0.2, total=12))
    assert not scoring.should_evict(pattern_factory(success_rate=0.9, total=12))
    # Unreliable but not enough trials yet
    assert not scoring.should_evict(pattern_factory(success_rate=0.2, total=5))
    assert scoring.should_evict(pattern_factory(success_rate=1.0, total=2, age_days=200))
    assert not scoring.should_evict(pattern_factory(success_rate=1.0, total=3, age_days=200))


def test_rank_patterns(pattern_factory):
    low = pattern_factory(selectors=('#a',), success_rate=0.72, total=25)
    high = pattern_factory(selectors=('#b',), success_rate=0.95, total=20)
    busy = pattern_factory(selectors=('#c',), success_rate=0.8, total=40, age_days=3)

    assert [p.id for p in scoring.rank_patterns([low, high, busy], 'success_rate')] == [high.id, busy.id, low.id]
    assert scoring.rank_patterns([low, high, busy], 'usage_count')[0].id == busy.id
    assert scoring.rank_patterns([busy, low], 'last_updated')[0].id == low.id
    assert scoring.rank_patterns([low, high], None) == [low, high]
    with pytest.raises(ValueError):
        scoring.rank_patterns([low], 'name')


def test_improvement_opportunities(pattern_factory):
    patterns = [
        pattern_factory(selectors=('#a',), success_rate=0.6, total=5),
        pattern_factory(selectors=('#b',), success_rate=1.0, total=5, age_days=120),
    ]
    opportunities = scoring.improvement_opportunities(patterns)
    assert any('below 80%' in o for o in opportunities)
    assert any('90 days' in o for o in opportunities)
