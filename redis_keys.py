REDIS_ROOM_KEY = "room:doc:{code}" # room code - JSON room document
REDIS_ROOM_CHANNEL = "room:channel:{code}" # room code - pub/sub channel name

# **Example `room:doc:{code}` document**
# - `code` = `{roomCode}`
# - `admin_name` = display name of the admin
# - `created_at` = epoch milliseconds
# - `participants` = {participant_id: {name, joined_at, hand_raised, raised_at}}
# - `queue` = {entry_id: {participant_id, raised_at}}
# - `entry_seq` = last allocated queue entry number

# **Channel messages**
# - `{"room": {...}}` after every applied change
# - `{"room": null}` once the room is deleted
