# State = the conversation as it must survive a restart.

# Only the short-term conversation store is persisted, as one snapshot per user:

# Turns in conversation order, keyed by platform identifier

# Every version of each turn and which one is selected

# Freewill boundary flags left by earlier evictions

# Long-term memory lives in the vector store and is not part of the snapshot
