# This module handles Context engineering

# +---------------------+
# |  Long-term memory   |   (Persistent, vector-indexed, external)
# |---------------------|
# | Evicted summaries   |
# | Stored facts        |
# +---------------------+

# +---------------------+
# |  Short-term memory  |   (Conversation store, branching turns)
# |---------------------|
# | Turns + versions    |
# | Tool bookkeeping    |
# | Freewill boundaries |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |        Context window        |   (Assembled for every provider call)
# |------------------------------|
# | System preamble (persona,    |
# |   time, recalled memories)   |
# | Ordered history              |
# | Pending user prompt          |
# | Overflow for archival        |
# +------------------------------+
#         |
#         v
#   [completion provider / tool call]
