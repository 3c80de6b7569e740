"""
Orchestream Test Suite

Test Categories:
- unit/: Fast, isolated tests of leaf components (config, cache, admission, retry, stats)
- engines/: Engine adapters against mocked HTTP transports and yt-dlp
- streaming/: Dispatcher, orchestrator and health monitor behavior
"""
