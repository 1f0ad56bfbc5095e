from types import SimpleNamespace

from dealerflow.leads.scoring import (
    QualificationScorer,
    score_budget,
    score_engagement,
    score_timeline,
    score_trade_in,
    score_vehicle_interest,
)


def _history(*texts, role="customer"):
    return [SimpleNamespace(role=role, content=t) for t in texts]


def test_empty_history_scores_zero():
    assert QualificationScorer().score([]) == 0
    assert QualificationScorer().factors(_history("hello", role="agent")) is None


def test_single_greeting_scores_engagement_only():
    factors = QualificationScorer().factors(_history("hello"))

    assert factors.as_dict() == {
        "vehicle_interest": 0,
        "budget": 0,
        "timeline": 0,
        "trade_in": 0,
        "engagement": 2,
    }
    assert factors.total == 2


def test_reference_hot_lead():
    scorer = QualificationScorer()
    history = _history("I want a Toyota Camry, budget around $30k, need it this week")

    factors = scorer.factors(history)

    assert factors.as_dict() == {
        "vehicle_interest": 18,
        "budget": 25,
        "timeline": 25,
        "trade_in": 0,
        "engagement": 2,
    }
    assert scorer.score(history) == 70


def test_agent_messages_do_not_count():
    history = _history("hi") + _history("We have a Toyota Camry for $30k today", role="agent")

    assert QualificationScorer().score(history) == 2


def test_vehicle_interest_tiers():
    assert score_vehicle_interest("hello") == 0
    assert score_vehicle_interest("a sedan") == 10
    assert score_vehicle_interest("a honda civic") == 18
    assert score_vehicle_interest("a new honda civic sedan") == 25


def test_dollar_amounts_score_full_budget_points():
    assert score_budget("around 25k") == 25
    assert score_budget("$450") == 25
    assert score_budget("what's the monthly payment") == 20
    assert score_budget("can i afford it") == 12
    assert score_budget("nothing here") == 0


def test_timeline_tiers():
    assert score_timeline("need it asap") == 25
    assert score_timeline("maybe next week") == 18
    assert score_timeline("just looking") == 5
    assert score_timeline("blue please") == 0


def test_trade_in_tiers():
    assert score_trade_in("no") == 0
    assert score_trade_in("i have a trade-in") == 10
    assert score_trade_in("what's my car worth as a trade in") == 15


def test_engagement_tiers():
    assert [score_engagement(n) for n in (0, 1, 3, 5, 10)] == [0, 2, 5, 7, 10]


def test_total_is_capped():
    history = _history(
        "new toyota camry sedan or honda accord suv",
        "budget $40k, financing, monthly payment",
        "need it today",
        "trade-in: my car, what is it worth",
        *["ok"] * 8,
    )

    assert QualificationScorer().score(history) == 100
