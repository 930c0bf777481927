"""Tests for policy definition and evaluation."""

import json
from typing import Optional

import pytest
from pydantic import BaseModel

from bantai.context import define_context, extend_context
from bantai.errors import PolicyDefinitionError, PolicyViolationError, SchemaValidationError
from bantai.policy import (
    EvaluationState,
    PolicyDecision,
    PolicyEvaluator,
    PolicyReason,
    Strategy,
    define_policy,
    evaluate_policy,
    evaluate_policy_sync,
    raise_on_deny,
)
from bantai.rules import RuleResult, allow, define_rule, deny, skip


class User(BaseModel):
    name: str = "anon"
    age: int


class Recorder:
    """Builds rules that log their evaluate and hook calls."""

    def __init__(self, context):
        self.context = context
        self.calls = []

    def rule(self, name, result=None, error=None):
        def evaluate(data, ctx):
            self.calls.append(f"evaluate:{name}")
            if error is not None:
                raise error
            return result

        def on_allow(res, data, ctx):
            self.calls.append(f"on_allow:{name}")

        def on_deny(res, data, ctx):
            self.calls.append(f"on_deny:{name}")

        return define_rule(self.context, name, evaluate, on_allow=on_allow, on_deny=on_deny)

    def hooks(self):
        return [c for c in self.calls if c.startswith("on_")]


class TestIsAdultPolicy:
    """End-to-end evaluation of a single-rule policy."""

    def setup_method(self):
        """Set up test fixtures."""
        self.context = define_context(User)
        self.rule = define_rule(
            self.context,
            "is-adult",
            lambda user, ctx: allow() if user.age >= 18 else deny(reason="underage"),
        )
        self.policy = define_policy(self.context, "adults-only", [self.rule])

    @pytest.mark.asyncio
    async def test_minor_denied(self):
        result = await evaluate_policy(self.policy, {"age": 15})

        assert result.decision == PolicyDecision.DENY
        assert result.is_allowed is False
        assert result.reason == PolicyReason.POLICY_VIOLATED
        assert result.violated_rule_names == ("is-adult",)
        assert result.violated_rules[0].result.reason == "underage"

    @pytest.mark.asyncio
    async def test_adult_allowed(self):
        result = await evaluate_policy(self.policy, {"age": 20})

        assert result.decision == PolicyDecision.ALLOW
        assert result.is_allowed is True
        assert result.reason == PolicyReason.POLICY_ENFORCED
        assert result.violated_rules == ()
        assert result.evaluated_rule_names == ("is-adult",)

    @pytest.mark.asyncio
    async def test_model_input(self):
        result = await evaluate_policy(self.policy, User(age=20))
        assert result.is_allowed

    @pytest.mark.asyncio
    async def test_invalid_input_raises_before_rules(self):
        """Schema errors reach the caller and no rule runs."""
        recorder = Recorder(self.context)
        policy = define_policy(self.context, "p", [recorder.rule("r1", allow())])

        with pytest.raises(SchemaValidationError):
            await evaluate_policy(policy, {"age": "old"})

        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_evaluation_ids_unique(self):
        first = await evaluate_policy(self.policy, {"age": 20})
        second = await evaluate_policy(self.policy, {"age": 20})

        assert first.evaluation_id.startswith("eval:")
        assert first.evaluation_id != second.evaluation_id

    def test_sync_wrapper(self):
        result = evaluate_policy_sync(self.policy, {"age": 15})
        assert result.decision == PolicyDecision.DENY

    @pytest.mark.asyncio
    async def test_result_serialises_to_json(self):
        """Evaluated rules dump as their identity, not the Rule object."""
        result = await evaluate_policy(self.policy, {"age": 20})

        dumped = json.loads(result.model_dump_json())

        assert dumped["decision"] == "allow"
        assert dumped["evaluated_rules"][0]["rule"] == {
            "name": "is-adult",
            "id": "rule:is-adult",
            "version": "v1",
        }
        assert result.evaluated_rules[0].rule is self.rule


class TestPreemptiveStrategy:
    """Test fail-fast evaluation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.recorder = Recorder(define_context(User))

    @pytest.mark.asyncio
    async def test_stops_at_first_violation(self):
        """First denial at rule k ends evaluation with k evaluated rules."""
        rules = [
            self.recorder.rule("r1", allow()),
            self.recorder.rule("r2", deny(reason="no")),
            self.recorder.rule("r3", allow()),
        ]
        policy = define_policy(self.recorder.context, "p", rules)

        result = await evaluate_policy(policy, {"age": 1})

        assert result.strategy == Strategy.PREEMPTIVE
        assert result.decision == PolicyDecision.DENY
        assert len(result.evaluated_rules) == 2
        assert result.violated_rule_names == ("r2",)
        assert "evaluate:r3" not in self.recorder.calls

    @pytest.mark.asyncio
    async def test_hooks_fire_immediately(self):
        """Each rule's hook fires before the next rule runs."""
        rules = [
            self.recorder.rule("r1", allow()),
            self.recorder.rule("r2", deny()),
            self.recorder.rule("r3", allow()),
        ]
        policy = define_policy(self.recorder.context, "p", rules)

        await evaluate_policy(policy, {"age": 1})

        assert self.recorder.calls == [
            "evaluate:r1",
            "on_allow:r1",
            "evaluate:r2",
            "on_deny:r2",
        ]

    @pytest.mark.asyncio
    async def test_skipped_rules_fire_no_hooks(self):
        rules = [self.recorder.rule("r1", skip()), self.recorder.rule("r2", allow())]
        policy = define_policy(self.recorder.context, "p", rules)

        result = await evaluate_policy(policy, {"age": 1})

        assert result.is_allowed
        assert self.recorder.hooks() == ["on_allow:r2"]

    @pytest.mark.asyncio
    async def test_skipped_denial_not_a_violation(self):
        """A skipped result never counts against the policy."""
        rules = [self.recorder.rule("r1", RuleResult(allowed=False, skipped=True))]
        policy = define_policy(self.recorder.context, "p", rules)

        result = await evaluate_policy(policy, {"age": 1})

        assert result.is_allowed
        assert result.violated_rules == ()
        assert self.recorder.hooks() == []

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        policy = define_policy(self.recorder.context, "p", [self.recorder.rule("r1", allow())])
        evaluator = PolicyEvaluator(policy)

        await evaluator.run({"age": 1})

        assert evaluator.transitions == [
            EvaluationState.VALIDATING,
            EvaluationState.RUNNING,
            EvaluationState.DECIDING,
            EvaluationState.EMITTING,
            EvaluationState.DONE,
        ]


class TestExhaustiveStrategy:
    """Test collect-all evaluation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.recorder = Recorder(define_context(User))
        self.rules = [
            self.recorder.rule("r1", allow()),
            self.recorder.rule("r2", deny(reason="first")),
            self.recorder.rule("r3", skip()),
            self.recorder.rule("r4", deny(reason="second")),
        ]
        self.policy = define_policy(
            self.recorder.context, "p", self.rules, default_strategy=Strategy.EXHAUSTIVE
        )

    @pytest.mark.asyncio
    async def test_every_rule_evaluated(self):
        result = await evaluate_policy(self.policy, {"age": 1})

        assert result.strategy == Strategy.EXHAUSTIVE
        assert len(result.evaluated_rules) == len(self.rules)
        assert result.evaluated_rule_names == ("r1", "r2", "r3", "r4")

    @pytest.mark.asyncio
    async def test_violations_in_rule_order(self):
        result = await evaluate_policy(self.policy, {"age": 1})

        assert result.decision == PolicyDecision.DENY
        assert result.violated_rule_names == ("r2", "r4")

    @pytest.mark.asyncio
    async def test_hooks_deferred_until_decision(self):
        """On deny only the denying rules' on_deny hooks run, after all rules."""
        await evaluate_policy(self.policy, {"age": 1})

        assert self.recorder.calls == [
            "evaluate:r1",
            "evaluate:r2",
            "evaluate:r3",
            "evaluate:r4",
            "on_deny:r2",
            "on_deny:r4",
        ]

    @pytest.mark.asyncio
    async def test_on_allow_when_policy_allows(self):
        recorder = Recorder(define_context(User))
        rules = [recorder.rule("r1", allow()), recorder.rule("r2", skip()), recorder.rule("r3", allow())]
        policy = define_policy(recorder.context, "p", rules, default_strategy="exhaustive")

        result = await evaluate_policy(policy, {"age": 1})

        assert result.is_allowed
        assert recorder.hooks() == ["on_allow:r1", "on_allow:r3"]

    @pytest.mark.asyncio
    async def test_strategy_override(self):
        """The caller's strategy wins over the policy default."""
        result = await evaluate_policy(self.policy, {"age": 1}, strategy=Strategy.PREEMPTIVE)

        assert result.strategy == Strategy.PREEMPTIVE
        assert len(result.evaluated_rules) == 2

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        evaluator = PolicyEvaluator(self.policy)

        await evaluator.run({"age": 1})

        assert EvaluationState.DISPATCHING_HOOKS in evaluator.transitions
        assert evaluator.state == EvaluationState.DONE


class TestFailureIsolation:
    """Test rule and hook faults."""

    def setup_method(self):
        """Set up test fixtures."""
        self.recorder = Recorder(define_context(User))

    @pytest.mark.asyncio
    async def test_rule_exception_becomes_deny(self):
        rules = [
            self.recorder.rule("boom", error=RuntimeError("db down")),
            self.recorder.rule("r2", allow()),
        ]
        policy = define_policy(self.recorder.context, "p", rules, default_strategy="exhaustive")

        result = await evaluate_policy(policy, {"age": 1})

        assert result.decision == PolicyDecision.DENY
        assert result.violated_rule_names == ("boom",)
        assert result.violated_rules[0].result.reason == "rule_evaluation_error"
        assert "evaluate:r2" in self.recorder.calls

    @pytest.mark.asyncio
    async def test_non_result_return_becomes_deny(self):
        rules = [self.recorder.rule("bad", result="yes")]
        policy = define_policy(self.recorder.context, "p", rules)

        result = await evaluate_policy(policy, {"age": 1})

        assert result.violated_rules[0].result.reason == "rule_evaluation_error"

    @pytest.mark.asyncio
    async def test_rule_fault_logged(self, caplog):
        policy = define_policy(
            self.recorder.context, "p", [self.recorder.rule("boom", error=ValueError("bad"))]
        )

        await evaluate_policy(policy, {"age": 1})

        assert "Rule 'boom' raised ValueError" in caplog.text

    @pytest.mark.asyncio
    async def test_hook_exception_contained(self):
        """A failing hook neither changes the decision nor stops later rules."""
        context = define_context(User)

        def failing_hook(result, data, ctx):
            raise RuntimeError("hook failed")

        rules = [
            define_rule(context, "r1", lambda d, c: allow(), on_allow=failing_hook),
            define_rule(context, "r2", lambda d, c: allow()),
        ]
        policy = define_policy(context, "p", rules)

        result = await evaluate_policy(policy, {"age": 1})

        assert result.is_allowed
        assert result.evaluated_rule_names == ("r1", "r2")


class TestEvaluatorDetails:
    """Test async rules, rule contexts and evaluator reuse."""

    @pytest.mark.asyncio
    async def test_async_rules_and_hooks(self):
        context = define_context(User)
        seen = []

        async def evaluate(data, ctx):
            return allow()

        async def on_allow(result, data, ctx):
            seen.append(ctx.evaluation_id)

        policy = define_policy(context, "p", [define_rule(context, "r1", evaluate, on_allow=on_allow)])

        result = await evaluate_policy(policy, {"age": 1})

        assert result.is_allowed
        assert seen == [result.evaluation_id]

    @pytest.mark.asyncio
    async def test_rule_context(self):
        """Rules get the policy context's tools and their own identity."""
        context = define_context(User, tools={"threshold": 18})
        captured = {}

        def evaluate(data, ctx):
            captured["ctx"] = ctx
            return allow() if data.age >= ctx.tools.threshold else deny()

        rule = define_rule(context, "r1", evaluate)
        policy = define_policy(context, "p", [rule])

        result = await evaluate_policy(policy, {"age": 30})

        ctx = captured["ctx"]
        assert result.is_allowed
        assert ctx.rule is rule
        assert ctx.evaluation_id == result.evaluation_id
        assert ctx.audit is None

    @pytest.mark.asyncio
    async def test_evaluator_single_use(self):
        context = define_context(User)
        policy = define_policy(context, "p", [define_rule(context, "r1", lambda d, c: allow())])
        evaluator = PolicyEvaluator(policy)

        await evaluator.run({"age": 1})

        with pytest.raises(RuntimeError):
            await evaluator.run({"age": 1})


class TestDefinePolicy:
    """Test policy definition."""

    def setup_method(self):
        """Set up test fixtures."""
        self.context = define_context(User)
        self.rule = define_rule(self.context, "Is Adult", lambda d, c: allow())

    def test_define_policy(self):
        policy = define_policy(self.context, "Adults Only", [self.rule])

        assert policy.id == "policy:adults-only"
        assert policy.version == "v1"
        assert policy.default_strategy == Strategy.PREEMPTIVE
        assert list(policy.rules) == ["Is Adult"]

    def test_definitions_hashable(self):
        """Rules, policies and contexts can be used as set members and dict keys."""
        policy = define_policy(self.context, "p", [self.rule])

        assert len({self.rule, self.rule}) == 1
        assert {policy: "p"}[policy] == "p"
        assert self.context in {self.context}

    def test_rules_read_only(self):
        policy = define_policy(self.context, "p", [self.rule])

        with pytest.raises(TypeError):
            policy.rules["other"] = self.rule

    def test_duplicate_rule_names(self):
        with pytest.raises(PolicyDefinitionError):
            define_policy(self.context, "p", [self.rule, self.rule])

    def test_non_rule_rejected(self):
        with pytest.raises(PolicyDefinitionError):
            define_policy(self.context, "p", [lambda d, c: allow()])

    def test_rule_from_base_context(self):
        """Rules defined on a base context fit policies on an extension of it."""
        extended = extend_context(self.context, fields={"email": (Optional[str], None)})

        policy = define_policy(extended, "p", [self.rule])

        assert policy.rules["Is Adult"] is self.rule

    def test_rule_needing_missing_fields(self):
        extended = extend_context(self.context, fields={"email": (Optional[str], None)})
        rule = define_rule(extended, "has-email", lambda d, c: allow())

        with pytest.raises(PolicyDefinitionError):
            define_policy(self.context, "p", [rule])

    def test_invalid_strategy(self):
        with pytest.raises(ValueError):
            define_policy(self.context, "p", [self.rule], default_strategy="random")


class TestRaiseOnDeny:
    """Test turning denials into exceptions."""

    def setup_method(self):
        """Set up test fixtures."""
        context = define_context(User)
        rule = define_rule(
            context,
            "is-adult",
            lambda user, ctx: allow() if user.age >= 18 else deny(reason="underage"),
        )
        self.policy = define_policy(context, "adults-only", [rule])

    def test_deny_raises(self):
        result = evaluate_policy_sync(self.policy, {"age": 10})

        with pytest.raises(PolicyViolationError) as exc_info:
            raise_on_deny(result, self.policy)

        error = exc_info.value
        assert error.result is result
        assert error.to_dict()["result"]["violated_rules"] == [{"name": "is-adult", "reason": "underage"}]
        assert "- is-adult: underage" in error.prettify()

    def test_allow_passes(self):
        result = evaluate_policy_sync(self.policy, {"age": 30})
        raise_on_deny(result, self.policy)
