import os

# Gateway wiring reads settings at import time; keep tests off disk and network.
os.environ["JOB_STORE_URL"] = "memory://"
os.environ["ALERT_WEBHOOK_URL"] = ""
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
