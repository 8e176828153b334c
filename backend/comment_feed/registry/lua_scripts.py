"""
Redis Lua Scripts for Atomic Registry Writes.

Register and Deregister touch two keys (the channel set and the reverse
connection key). Running both changes in one script keeps each operation a
single atomic round trip.

Usage:
    from comment_feed.registry.lua_scripts import REGISTER_SCRIPT, DEREGISTER_SCRIPT

    register = redis_client.register_script(REGISTER_SCRIPT)
    await register(keys=[channel_key, connection_key], args=[connection_id, channel])
"""

# =============================================================================
# Register
# =============================================================================

REGISTER_SCRIPT = """
-- KEYS[1] = channel set key (e.g. "websocket.comment-feed:channel:room1")
-- KEYS[2] = reverse connection key (e.g. "websocket.comment-feed:connection:abc")
-- ARGV[1] = connection id
-- ARGV[2] = channel
-- Returns: 1 if the member was added, 0 if it was already present

local added = redis.call('SADD', KEYS[1], ARGV[1])
redis.call('SET', KEYS[2], ARGV[2])
return added
"""

# =============================================================================
# Deregister
# =============================================================================

DEREGISTER_SCRIPT = """
-- KEYS[1] = channel set key
-- KEYS[2] = reverse connection key
-- ARGV[1] = connection id
-- ARGV[2] = channel being left
-- Returns: 1 if the member was removed, 0 if it was absent
--
-- The reverse key is only dropped while it still names the channel being
-- left; a later register into another channel owns it.

local removed = redis.call('SREM', KEYS[1], ARGV[1])
if redis.call('GET', KEYS[2]) == ARGV[2] then
    redis.call('DEL', KEYS[2])
end
return removed
"""
