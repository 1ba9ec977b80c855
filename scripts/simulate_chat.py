"""
Simulate two users chatting through the same code path the bridge uses,
against the in-memory backend, to watch optimistic sends reconcile with
their realtime echoes and the notification feed fill up.
"""
import asyncio
import sys
import os
import logging

os.chdir(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, ".")

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s %(message)s')


async def simulate():
    from socialsync.gateway import InMemoryGateway
    from socialsync.database import create_tables
    from socialsync.services import (
        ChatSessionController,
        EventBus,
        MessageStore,
        NotificationAggregator,
        RealtimeSubscriber,
        SocialStore,
        WatermarkStore,
    )

    await create_tables()
    gateway = InMemoryGateway()
    gateway.seed(
        "profiles",
        {"id": "alice", "username": "alice", "full_name": "Alice Liddell"},
        {"id": "bob", "username": "bob", "full_name": "Bob Builder"},
    )
    gateway.seed("friends", {"id": "f1", "requester_id": "alice", "addressee_id": "bob", "status": "accepted"})
    post = gateway.seed("posts", {"user_id": "alice", "content": "Hello world"})[0]

    bus = EventBus()
    store = MessageStore(gateway)
    subscriber = RealtimeSubscriber(gateway)

    alice = ChatSessionController("alice", store, subscriber, bus=bus)
    bob = ChatSessionController("bob", store, subscriber, bus=bus)

    print("\n=== OPEN ===")
    await alice.open("bob")
    await bob.open("alice")
    print(f"alice: {alice.state.value}, bob: {bob.state.value}")

    print("\n=== SEND (echo arrives before the insert returns) ===")
    await alice.send_message("Hi Bob!")
    print(f"alice sees {len(alice.messages)} message(s): {[m.content for m in alice.messages]}")
    print(f"bob sees   {len(bob.messages)} message(s): {[m.content for m in bob.messages]}")

    print("\n=== SEND (insert returns before the echo) ===")
    gateway.hold_events()
    await bob.send_message("Hey Alice")
    print(f"bob before echo: {[(m.content, m.pending) for m in bob.messages]}")
    await gateway.release_events()
    await asyncio.sleep(0)
    print(f"bob after echo:  {[(m.content, m.pending) for m in bob.messages]}")

    print("\n=== UNREAD ===")
    print(f"alice unread from bob: {await store.get_unread_count_for_friend('alice', 'bob')}")

    print("\n=== NOTIFICATIONS ===")
    gateway.seed("likes", {"post_id": post["id"], "user_id": "bob"}, {"post_id": post["id"], "user_id": "alice"})
    gateway.seed("comments", {"post_id": post["id"], "user_id": "bob", "content": "Nice!"})
    aggregator = NotificationAggregator("alice", SocialStore(gateway), WatermarkStore(), bus=bus)
    for item in await aggregator.load():
        print(f"  {item.id:<50} {item.kind.value:<15} by {item.actor.display_name if item.actor else '?'}")
    print(f"unseen: {aggregator.unseen_count} badge: '{aggregator.badge}'")
    await aggregator.mark_all_seen()
    print(f"after mark_all_seen: {aggregator.unseen_count}")

    await alice.teardown()
    await bob.teardown()
    print(f"\nopen channels after teardown: {gateway.subscription_count}")
    print("\n=== DONE ===")


if __name__ == "__main__":
    asyncio.run(simulate())
