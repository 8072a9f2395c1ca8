"""Tests for Computed values, the engine behind store getters."""

import pytest

from pinyx import Computed, Observable, ObservableList, autorun, computed, transaction


def counting(fn):
    """Wrap fn so the test can see how often it ran."""
    calls = []

    def wrapper():
        calls.append(1)
        return fn()

    return wrapper, calls


class TestComputed:
    def test_lazy_until_first_read(self):
        price = Observable(5)
        fn, calls = counting(lambda: price.get() * 2)
        total = Computed(fn)
        assert calls == []
        assert total.get() == 10
        assert len(calls) == 1

    def test_cached_between_reads(self):
        price = Observable(5)
        fn, calls = counting(lambda: price.get() * 2)
        total = Computed(fn)
        total.get()
        total.get()
        assert len(calls) == 1
        assert not total.dirty

    def test_write_marks_dirty(self):
        price = Observable(5)
        total = Computed(lambda: price.get() * 2)
        total.get()
        price.set(6)
        assert total.dirty
        assert total.get() == 12

    def test_switches_dependencies(self):
        use_discount = Observable(False)
        full = Observable(100)
        discounted = Observable(80)
        price = Computed(lambda: discounted.get() if use_discount.get() else full.get())
        assert price.get() == 100

        use_discount.set(True)
        assert price.get() == 80
        full.set(120)
        assert not price.dirty

    def test_chain_over_list(self):
        items = ObservableList([1, 2])
        subtotal = Computed(lambda: sum(items))
        with_tax = Computed(lambda: subtotal.get() * 2)
        assert with_tax.get() == 6
        items.append(3)
        assert with_tax.get() == 12

    def test_dispose_drops_cache(self):
        price = Observable(5)
        fn, calls = counting(lambda: price.get() * 2)
        total = Computed(fn)
        total.get()
        total.dispose()
        price.set(10)
        assert total.get() == 20
        assert len(calls) == 2

    def test_reaction_reruns_only_on_new_value(self):
        qty = Observable(1)
        in_stock = Computed(lambda: qty.get() > 0)
        log = []
        autorun(lambda: log.append(in_stock.get()))
        qty.set(0)
        assert log == [True, False]

    def test_name_and_repr(self):
        def subtotal():
            return 0

        assert Computed(subtotal).name == "subtotal"
        assert Computed(subtotal, name="total").name == "total"
        assert "total" in repr(Computed(subtotal, name="total"))


class TestComputedDecorator:
    def test_decorator(self):
        qty = Observable(7)

        @computed
        def doubled():
            return qty.get() * 2

        assert isinstance(doubled, Computed)
        assert doubled.get() == 14
        qty.set(3)
        assert doubled.get() == 6


class TestComputedErrors:
    def test_error_reaches_reader_and_retries(self):
        qty = Observable(0)
        ratio = Computed(lambda: 10 // qty.get(), name="ratio")
        with pytest.raises(ZeroDivisionError):
            ratio.get()
        assert ratio.dirty
        qty.set(2)
        assert ratio.get() == 5


class TestComputedInBatch:
    def test_read_after_write_in_transaction_is_fresh(self):
        qty = Observable(1)
        doubled = Computed(lambda: qty.get() * 2)
        assert doubled.get() == 2
        with transaction():
            qty.set(5)
            assert doubled.dirty
            assert doubled.get() == 10

    def test_failing_reaction_does_not_block_others(self):
        qty = Observable(1)
        seen = []

        def fragile():
            if qty.get() > 1:
                raise ValueError("too many")

        autorun(fragile)
        autorun(lambda: seen.append(qty.get()))
        with pytest.raises(ValueError):
            with transaction():
                qty.set(2)
        assert seen == [1, 2]
        qty.set(1)
        assert seen == [1, 2, 1]
