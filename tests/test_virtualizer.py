"""
End-to-end tests for the Virtualizer.

Validates:
  - The greet scenario and non-eager evaluation of operands
  - Referential transparency with pass-through behaviors
  - Scope preservation (arguments, branch locals, closures, super, privates)
  - Per-instance isolation and restoration from a captured tree
  - while loops with break, continue, else and return
  - Target selection, decorator usage and failure behavior
  - Class-constant and mutable defaults surviving the rewrite
"""

import ast
import logging
import pytest
from virtual_keywords import (
    ClassReflection,
    KeywordRegistry,
    ReflectionError,
    REWRITTEN_KEYWORDS,
    TreeStringifier,
    UnsupportedConstructError,
    UnvirtualizedKeywordError,
    Virtualizer,
    while_driver,
)


def make_greeter():
    class Greeter:
        def __init__(self, hello):
            self.hello = hello

        def greet(self):
            if self.hello:
                return 'hi'
            else:
                return 'bye'

    return Greeter


def make_namer(suffix):
    class Namer:
        def __init__(self, formal):
            self.formal = formal

        def name(self, first):
            if self.formal:
                greeting = 'Dear ' + first
            else:
                greeting = 'Hi ' + first
            return greeting + suffix

    return Namer


def make_counter():
    class Counter:
        def __init__(self, skip=None, stop=None):
            self.skip = skip
            self.stop = stop

        def countdown(self, n):
            steps = []
            while n > 0:
                if n == self.skip:
                    n -= 1
                    continue
                if n == self.stop:
                    break
                steps.append(n)
                n -= 1
            else:
                steps.append('done')
            return steps

        def find(self, items, target):
            i = 0
            while i < len(items):
                if items[i] == target:
                    return i
                i += 1
            return -1

        def classify(self, n):
            if n < 0:
                return 'neg'
            elif n == 0:
                return 'zero'
            label = 'big' if n > 100 else 'small'
            return label

        def pick(self, a, b, c):
            return a and b or c

        def evens(self, items):
            return [i for i in items if i % 2 == 0]

        def total(self, items):
            result = 0
            for item in items:
                if item is None:
                    break
                if item < 0 or item > 10:
                    continue
                result += item
            return result

    return Counter


def logging_if(log):
    def behavior(condition, then, orelse):
        log.append('cond')
        result = then() if condition() else orelse()
        log.append('done')
        return result
    return behavior


def plain_if(condition, then, orelse):
    return then() if condition() else orelse()


def inverted_if(condition, then, orelse):
    return orelse() if condition() else then()


def plain_and(left, right):
    return left() and right()


def plain_or(left, right):
    return left() or right()


def _exercise(counter):
    return [
        counter.countdown(5),
        counter.countdown(0),
        counter.find([4, 5, 6], 6),
        counter.find([4, 5, 6], 7),
        [counter.classify(n) for n in (-3, 0, 7, 500)],
        [counter.pick(a, b, c) for a in (0, 1) for b in (0, 2) for c in (0, 3)],
        counter.evens(range(7)),
        counter.total([1, -2, 3, 20, 4, None, 5]),
    ]


# ---------- Greet Scenario Tests ----------

class TestGreetScenario:
    def setup_method(self):
        self.Greeter = make_greeter()
        self.registry = KeywordRegistry()
        self.virtualizer = Virtualizer(for_classes=[self.Greeter], registry=self.registry)

    def test_greet(self):
        log = []
        self.virtualizer.virtual_if(logging_if(log))
        assert self.Greeter(True).greet() == 'hi'
        assert log == ['cond', 'done']

    def test_greet_false_branch(self):
        log = []
        self.virtualizer.virtual_if(logging_if(log))
        assert self.Greeter(False).greet() == 'bye'
        assert log == ['cond', 'done']

    def test_existing_instances_see_change(self):
        greeter = self.Greeter(True)
        self.virtualizer.virtual_if(inverted_if)
        assert greeter.greet() == 'bye'

    def test_rewritten_code(self):
        tree = ClassReflection().translate(self.Greeter, 'greet')
        source = self.virtualizer.rewritten_code(tree, self.virtualizer.config.if_rewriter)
        assert "__vk_registry__.lookup(self, 'if')" in source
        assert not any(isinstance(n, ast.IfExp) for n in ast.walk(ast.parse(source)))

    def test_installed_source_is_inspectable(self):
        import inspect

        self.virtualizer.virtual_if(plain_if)
        assert 'lookup(self' in inspect.getsource(self.Greeter.greet)


# ---------- Evaluation Tests ----------

class TestEvaluation:
    def setup_method(self):
        self.registry = KeywordRegistry()

    def test_branches_not_evaluated_eagerly(self):
        class Tracker:
            def __init__(self):
                self.events = []

            def choose(self, flag):
                if flag:
                    self.events.append('then')
                else:
                    self.events.append('else')

        Virtualizer(for_classes=[Tracker], registry=self.registry).virtual_if(plain_if)
        tracker = Tracker()
        tracker.choose(True)
        assert tracker.events == ['then']

    def test_right_operand_not_evaluated_eagerly(self):
        class Checker:
            def __init__(self):
                self.calls = []

            def first(self):
                self.calls.append('first')
                return False

            def second(self):
                self.calls.append('second')
                return True

            def both(self):
                return self.first() and self.second()

        Virtualizer(for_classes=[Checker], registry=self.registry).virtual_and(plain_and)
        checker = Checker()
        assert checker.both() is False
        assert checker.calls == ['first']

    def test_behavior_controls_evaluation(self):
        class Repeater:
            def __init__(self):
                self.count = 0

            def bump(self):
                if self.count >= 0:
                    self.count += 1

        def twice(condition, then, orelse):
            then()
            return then()

        Virtualizer(for_classes=[Repeater], registry=self.registry).virtual_if(twice)
        repeater = Repeater()
        repeater.bump()
        assert repeater.count == 2

    def test_behavior_may_replace_value(self):
        class Judge:
            def verdict(self, a, b):
                return a or b

        Virtualizer(for_classes=[Judge], registry=self.registry).virtual_or(
            lambda left, right: 'overruled'
        )
        assert Judge().verdict(1, 2) == 'overruled'


# ---------- Referential Transparency Tests ----------

class TestReferentialTransparency:
    def setup_method(self):
        self.expected = _exercise(make_counter()(skip=3))
        self.registry = KeywordRegistry()

    def _virtualized(self, order):
        Counter = make_counter()
        virtualizer = Virtualizer(for_classes=[Counter], registry=self.registry)
        entry_points = {
            'if': lambda: virtualizer.virtual_if(plain_if),
            'and': lambda: virtualizer.virtual_and(plain_and),
            'or': lambda: virtualizer.virtual_or(plain_or),
            'while': lambda: virtualizer.virtual_while(),
        }
        for keyword in order:
            entry_points[keyword]()
        return Counter

    @pytest.mark.parametrize("order", [
        ('if',),
        ('and',),
        ('or',),
        ('while',),
        ('if', 'and', 'or', 'while'),
        ('while', 'or', 'and', 'if'),
    ])
    def test_pass_through(self, order):
        Counter = self._virtualized(order)
        assert _exercise(Counter(skip=3)) == self.expected

    def test_break_and_else(self):
        Counter = self._virtualized(('while', 'if'))
        assert Counter(stop=2).countdown(5) == [5, 4, 3]
        assert Counter().countdown(3) == [3, 2, 1, 'done']

    def test_continue(self):
        Counter = self._virtualized(('if', 'while'))
        assert Counter(skip=4).countdown(5) == [5, 3, 2, 1, 'done']

    def test_return_from_loop(self):
        Counter = self._virtualized(('while',))
        assert Counter().find(['a', 'b'], 'b') == 1

    def test_custom_loop_behavior(self):
        Counter = make_counter()
        virtualizer = Virtualizer(for_classes=[Counter], registry=self.registry)
        rounds = []

        @virtualizer.virtual_while
        def counting_driver(condition, body):
            rounds.append(0)
            return while_driver(condition, body)

        assert Counter().countdown(2) == [2, 1, 'done']
        assert rounds == [0]


# ---------- Scope Tests ----------

class TestScopePreservation:
    def setup_method(self):
        self.registry = KeywordRegistry()

    def test_arguments_branch_locals_and_closures(self):
        Namer = make_namer('!')
        Virtualizer(for_classes=[Namer], registry=self.registry).virtual_if(plain_if)
        assert Namer(True).name('Ada') == 'Dear Ada!'
        assert Namer(False).name('Ada') == 'Hi Ada!'

    def test_private_names(self):
        class Vault:
            def __init__(self, unlocked):
                self.__secret = 'gold'
                self.unlocked = unlocked

            def peek(self):
                if self.unlocked:
                    return self.__secret
                return None

        Virtualizer(for_classes=[Vault], registry=self.registry).virtual_if(plain_if)
        assert Vault(True).peek() == 'gold'
        assert Vault(False).peek() is None

    def test_super_inside_branch(self):
        class Base:
            def describe(self):
                return 'base'

        class Child(Base):
            loud = True

            def describe(self):
                if self.loud:
                    return super().describe().upper()
                return super().describe()

        Virtualizer(for_classes=[Child], registry=self.registry).virtual_if(plain_if)
        assert Child().describe() == 'BASE'

    def test_receiver_under_another_name(self):
        class Odd:
            flag = True

            def check(this):
                return 'yes' if this.flag else 'no'

        Virtualizer(for_classes=[Odd], registry=self.registry).virtual_if(inverted_if)
        assert Odd().check() == 'no'

    def test_walrus_condition(self):
        class Measure:
            def __init__(self, items):
                self.items = items

            def size(self):
                if (n := len(self.items)) > 2:
                    return n
                return 0

        Virtualizer(for_classes=[Measure], registry=self.registry).virtual_if(plain_if)
        assert Measure([1, 2, 3]).size() == 3
        assert Measure([1]).size() == 0


# ---------- Instance Tests ----------

class TestInstances:
    def setup_method(self):
        self.Greeter = make_greeter()
        self.registry = KeywordRegistry()

    def test_isolation(self):
        first, second, third = self.Greeter(True), self.Greeter(True), self.Greeter(True)
        Virtualizer(for_instances=[first], registry=self.registry).virtual_if(inverted_if)
        Virtualizer(for_instances=[second], registry=self.registry).virtual_if(plain_if)
        assert first.greet() == 'bye'
        assert second.greet() == 'hi'
        assert third.greet() == 'hi'
        assert self.Greeter.greet(first) == 'hi'

    def test_special_methods_stay_on_class(self):
        greeter = self.Greeter(True)
        Virtualizer(for_instances=[greeter], registry=self.registry).virtual_if(plain_if)
        assert 'greet' in vars(greeter)
        assert '__init__' not in vars(greeter)

    def test_second_keyword_builds_on_first(self):
        class Gate:
            def check(self, a, b):
                if a and b:
                    return 'open'
                return 'closed'

        gate = Gate()
        seen = []
        virtualizer = Virtualizer(for_instances=[gate], registry=self.registry)

        @virtualizer.virtual_if
        def seen_if(condition, then, orelse):
            seen.append('if')
            return plain_if(condition, then, orelse)

        @virtualizer.virtual_and
        def seen_and(left, right):
            seen.append('and')
            return plain_and(left, right)

        assert gate.check(1, 1) == 'open'
        assert seen == ['if', 'and']
        assert Gate().check(1, 0) == 'closed'

    def test_restoration_from_capture(self):
        reflection = ClassReflection()
        capture = reflection.capture(self.Greeter, 'greet')
        Virtualizer(for_classes=[self.Greeter], registry=self.registry).virtual_if(inverted_if)
        assert self.Greeter(True).greet() == 'bye'

        reflection.install_on_class(self.Greeter, TreeStringifier().stringify(capture.tree))
        assert self.Greeter(True).greet() == 'hi'


# ---------- Target Selection Tests ----------

class TestTargets:
    def setup_method(self):
        self.Greeter = make_greeter()
        self.registry = KeywordRegistry()

    def test_subclasses_of(self):
        class Loud(self.Greeter):
            def greet(self):
                if self.hello:
                    return 'HI'
                return 'BYE'

        Virtualizer(for_subclasses_of=[self.Greeter], registry=self.registry).virtual_if(inverted_if)
        assert Loud(True).greet() == 'BYE'
        assert self.Greeter(True).greet() == 'hi'

    def test_target_classes_order(self):
        class Child(self.Greeter):
            pass

        virtualizer = Virtualizer(
            for_classes=[Child], for_subclasses_of=[self.Greeter], registry=self.registry
        )
        assert virtualizer.target_classes() == [Child]

    def test_subclass_of_virtualized_class(self):
        class Polite(self.Greeter):
            pass

        Virtualizer(for_classes=[self.Greeter], registry=self.registry).virtual_if(plain_if)
        with pytest.raises(UnvirtualizedKeywordError) as excinfo:
            Polite(True).greet()
        assert excinfo.value.keyword == 'if'

    def test_default_registry(self):
        assert Virtualizer().registry is REWRITTEN_KEYWORDS


# ---------- Entry Point Tests ----------

class TestEntryPoints:
    def setup_method(self):
        self.Greeter = make_greeter()
        self.registry = KeywordRegistry()
        self.virtualizer = Virtualizer(for_classes=[self.Greeter], registry=self.registry)

    def test_returns_behavior(self):
        assert self.virtualizer.virtual_if(plain_if) is plain_if
        assert self.registry.lookup(self.Greeter(True), 'if') is plain_if

    def test_decorator(self):
        @self.virtualizer.virtual_if
        def flipped(condition, then, orelse):
            return inverted_if(condition, then, orelse)

        assert callable(flipped)
        assert self.Greeter(True).greet() == 'bye'

    def test_default_while_behavior(self):
        assert self.virtualizer.virtual_while() is while_driver
        assert self.registry.lookup(self.Greeter(True), 'while') is while_driver

    def test_non_callable_behavior(self):
        with pytest.raises(TypeError):
            self.virtualizer.virtual_if('not callable')
        assert len(self.registry) == 0

    def test_unsupported_method_installs_nothing(self):
        class Mixed:
            def plain(self):
                if self.x:
                    return 1
                return 2

            def gen(self):
                if self.x:
                    yield 1

        original = vars(Mixed)['plain']
        with pytest.raises(UnsupportedConstructError):
            Virtualizer(for_classes=[Mixed], registry=self.registry).virtual_if(plain_if)
        assert vars(Mixed)['plain'] is original
        assert len(self.registry) == 0

    def test_enable_logging(self, caplog):
        caplog.set_level(logging.DEBUG, logger='virtual_keywords')
        Virtualizer(
            for_classes=[self.Greeter], registry=self.registry, enable_logging=True
        ).virtual_if(plain_if)
        assert any('Virtualized' in record.getMessage() for record in caplog.records)

    def test_failed_install_registers_nothing(self):
        class Compact:
            __slots__ = ('hello',)

            def greet(self):
                if self.hello:
                    return 'hi'
                return 'bye'

        compact = Compact()
        compact.hello = True
        with pytest.raises(ReflectionError):
            Virtualizer(for_instances=[compact], registry=self.registry).virtual_if(plain_if)
        assert len(self.registry) == 0
        assert compact.greet() == 'hi'


# ---------- Method Header Tests ----------

class TestMethodHeaders:
    def setup_method(self):
        self.registry = KeywordRegistry()

    def test_class_constant_default(self):
        class Host:
            DEFAULT = 'hi'

            def greet(self, word=DEFAULT):
                if word:
                    return word
                return 'silence'

        Virtualizer(for_classes=[Host], registry=self.registry).virtual_if(inverted_if)
        assert Host().greet() == 'silence'
        assert Host().greet('') == ''

    def test_mutable_default_shared_across_calls(self):
        class Memo:
            def remember(self, item, seen=[]):
                if item not in seen:
                    seen.append(item)
                return len(seen)

        original = Memo.remember.__defaults__[0]
        Virtualizer(for_classes=[Memo], registry=self.registry).virtual_if(plain_if)
        memo = Memo()
        assert [memo.remember(i) for i in 'abca'] == [1, 2, 3, 3]
        assert Memo.remember.__defaults__[0] is original
        assert original == ['a', 'b', 'c']

    def test_instance_with_class_constant_default(self):
        class Host:
            DEFAULT = 'hi'

            def greet(self, word=DEFAULT):
                if word:
                    return word
                return 'silence'

        host = Host()
        Virtualizer(for_instances=[host], registry=self.registry).virtual_if(inverted_if)
        assert host.greet() == 'silence'
        assert Host().greet() == 'hi'
