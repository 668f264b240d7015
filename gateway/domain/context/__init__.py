# Context engineering for a single turn

# +---------------------+
# |   Prompts           |   active global prompts by priority, then the
# +---------------------+   thread prompt; the configured default if empty
# |   Memory files      |   SOUL.md, MEMORY.md, daily logs
# +---------------------+
# |   Session history   |   persisted user / assistant messages
# +---------------------+
#          \    /
#           \  /
#            \/
# +------------------------------+
# |      Assembled context       |   system prompt + messages, measured
# |------------------------------|   per section in bytes, tokens, USD
# | system_prompt, soul,         |
# | long_term_memory,            |
# | recent_activity, skills,     |
# | history, tools, user_message |
# +------------------------------+
#            |
#            v
# +------------------------------+
# |   Memory pressure detector   |   over threshold: older history is
# +------------------------------+   flushed to today's daily log
