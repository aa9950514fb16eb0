import asyncio

from tether import MemoryConnection, Model, Site, use_local, use_query

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Subscribing a site to a query")
print("-" * 100)
print()

connection = MemoryConnection(
    latency=0.01,
    collections={
        "threads": {
            "t1": {"status": "open", "title": "Roadmap"},
            "t2": {"status": "closed", "title": "Release notes"},
            "t3": {"status": "open", "title": "Bug triage"},
        }
    },
)
model = Model(connection)
model.set("_page.filter", "open")


def render(site):
    # Hooks bind to the site by call order, like component hooks.
    with site.render():
        status, _, _ = use_local("_page.filter")
        threads, collection, ready = use_query("threads", {"status": status})

    if not ready:
        print(f"[{status}] loading...")
    else:
        print(f"[{status}] {[thread['title'] for thread in threads]}")
    return collection


async def main():
    # Every forced re-render (query landed, filter changed) renders the site again.
    site = Site(model, on_render=render)
    render(site)
    await asyncio.sleep(0.05)

    # ------------------------------------------------------------------------------------------------

    print()
    print("=" * 100)
    print("Changing the filter")
    print("-" * 100)
    print()

    # Two changes in one turn coalesce into a single re-render that only sees "open".
    model.set("_page.filter", "closed")
    model.set("_page.filter", "open")
    await asyncio.sleep(0.05)

    # Two renders with different filters: "closed" is cancelled and reclaimed, "archived" wins.
    model.set("_page.filter", "closed")
    await asyncio.sleep(0)
    model.set("_page.filter", "archived")
    await asyncio.sleep(0.05)

    site.unmount()
    print()
    print(f"refs left after unmount: {model.refs()}")


asyncio.run(main())
