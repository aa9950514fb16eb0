"""Unit tests for subscription sites and hook functions."""

import asyncio

import numpy as np
import pytest

from tests.utils.handles import settle
from tether import (
    HookOrderError,
    ParameterDescriptor,
    Site,
    SiteUnmountedError,
    Subscription,
    UnsupportedResourceKindError,
    sub_doc,
    sub_value,
    use_doc,
    use_local,
    use_query,
    use_value,
)


@pytest.mark.unit
def test_hooks_outside_a_render_fail():
    with pytest.raises(HookOrderError):
        use_value(1)


@pytest.mark.unit
def test_hook_functions_are_named_after_their_kind():
    assert use_doc.__name__ == "use_doc"
    assert use_query.__name__ == "use_query"


@pytest.mark.unit
class TestSubscription:
    def test_repeated_equal_arguments_reuse_the_handle(self, model, batcher):
        subscription = Subscription(sub_value, model, batcher)

        first = subscription({"a": 1, "b": 2})
        second = subscription({"b": 2, "a": 1})

        assert first == second
        assert subscription.controller.state.handles_created == 1

    def test_changed_arguments_create_a_new_handle(self, model, batcher):
        subscription = Subscription(sub_value, model, batcher)

        subscription("a")
        data, _, ready = subscription("b")

        assert ready
        assert data == "b"
        assert subscription.controller.state.handles_created == 2

    def test_closed_subscriptions_reject_calls(self, model, batcher):
        with Subscription(sub_value, model, batcher) as subscription:
            subscription("a")

        assert subscription.closed
        with pytest.raises(SiteUnmountedError):
            subscription("a")
        assert subscription.view == (None, None, False)

    def test_large_arrays_differing_deep_inside_resubscribe(self, model, batcher):
        subscription = Subscription(sub_value, model, batcher)
        signal = np.zeros(2000)
        changed = signal.copy()
        changed[500] = 7.0

        subscription(signal)
        data, _, ready = subscription(changed)

        assert ready
        assert data[500] == 7.0
        assert subscription.controller.state.handles_created == 2

    def test_unknown_kind_fails_on_every_call(self, model, batcher):
        def sub_bogus(name):
            return ParameterDescriptor("Bogus", (name,))

        subscription = Subscription(sub_bogus, model, batcher)

        for _ in range(2):
            with pytest.raises(UnsupportedResourceKindError):
                subscription("x")
        assert subscription.params is None
        assert subscription.controller.state.handles_created == 0

    def test_call_failing_outside_a_loop_subscribes_on_retry(self, model, batcher):
        """An async kind called without a loop is not remembered as subscribed"""
        subscription = Subscription(sub_doc, model, batcher)

        with pytest.raises(RuntimeError):
            subscription("users", "u1")
        assert subscription.params is None

        async def scenario():
            subscription("users", "u1")
            await settle()
            return subscription("users", "u1")

        user, _, ready = asyncio.run(scenario())

        assert ready
        assert user["name"] == "Ann"
        assert subscription.controller.state.handles_created == 1


@pytest.mark.unit
class TestSite:
    def test_value_hook(self, model, batcher):
        site = Site(model, batcher)

        with site.render():
            data, value_model, ready = use_value({"theme": "dark"})

        assert ready
        assert data == {"theme": "dark"}
        assert value_model.get("theme") == "dark"

    def test_rerender_reuses_subscriptions_by_position(self, model, batcher):
        site = Site(model, batcher)

        for _ in range(3):
            with site.render():
                use_value("a")
                use_local("_page.title")

        assert len(site.subscriptions) == 2
        assert [s.controller.state.handles_created for s in site.subscriptions] == [1, 1]

    def test_changing_hook_order_fails(self, model, batcher):
        site = Site(model, batcher)
        with site.render():
            use_value("a")

        with pytest.raises(HookOrderError):
            with site.render():
                use_local("_page.title")

    def test_rendering_fewer_hooks_fails(self, model, batcher):
        site = Site(model, batcher)
        with site.render():
            use_value("a")
            use_value("b")

        with pytest.raises(HookOrderError):
            with site.render():
                use_value("a")

    def test_rendering_more_hooks_fails(self, model, batcher):
        site = Site(model, batcher)
        with site.render():
            use_value("a")

        with pytest.raises(HookOrderError):
            with site.render():
                use_value("a")
                use_value("b")

    def test_nested_sites_bind_hooks_to_the_innermost(self, model, batcher):
        outer = Site(model, batcher)
        inner = Site(model, batcher)

        with outer.render():
            use_value("outer")
            with inner.render():
                use_value("inner")

        assert len(outer.subscriptions) == 1
        assert len(inner.subscriptions) == 1

    def test_store_changes_to_read_paths_request_a_render(self, model, batcher):
        rendered = []
        model.set("_page.title", "Home")
        site = Site(model, batcher, on_render=rendered.append)

        with site.render():
            title, _, _ = use_local("_page.title")
        assert title == "Home"

        model.set("_page.title", "About")
        model.set("_page.other", "ignored")

        assert rendered == [site]
        assert site.render_requests == 1

    def test_unmount_tears_everything_down(self, model, batcher):
        rendered = []
        site = Site(model, batcher, on_render=rendered.append)
        with site.render():
            use_value("a")
            use_local("_page.title")

        site.unmount()
        site.unmount()

        assert not site.mounted
        assert all(s.closed for s in site.subscriptions)
        assert model.refs() == {}
        model.set("_page.title", "changed")
        assert rendered == []
        with pytest.raises(SiteUnmountedError):
            with site.render():
                pass

    def test_handle_type_overrides_merge_with_defaults(self, model, gate, controlled_types):
        batcher_renders = []

        async def scenario():
            site = Site(model, on_render=batcher_renders.append, handle_types=controlled_types)
            with site.render():
                use_value("sync still works")
                use_doc("users", "u1")

            assert len(gate) == 1
            gate[0].resolve({"name": "Ann"})
            await settle()

            with site.render():
                (value, _, _), (doc, _, ready) = use_value("sync still works"), use_doc("users", "u1")

            assert value == "sync still works"
            assert ready
            assert doc == {"name": "Ann"}
            site.unmount()

        asyncio.run(scenario())

        assert len(batcher_renders) == 1
