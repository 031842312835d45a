"""
lostmode_core — Lost Mode tracking & command agent
==================================================
Architecture: one supervisor thread decides the operating mode, one worker
thread runs the report → directive → apply cycle. Zero busy-wait.

  constants.py     → Version, cadence, timeouts, retry policy, user modes
  config.py        → Paths, logging, config load/save, PreferenceStore
  http_client.py   → HTTP session with pooling + gateway retry + CA bundle
  capabilities.py  → CapabilitySet / CapabilityProbe (location, admin)
  platform_host.py → Desktop host: admin check, lock, lock monitor, beeper
  location.py      → PositionSample, IP geolocation, PositionSource
  channel.py       → TelemetryReport → CommandDirective (retry/backoff/parse)
  applier.py       → CommandApplier (lock once per epoch, bounded alert)
  state.py         → OperatingMode + AgentStatus (status surface)
  context.py       → AgentContext (all collaborators, injected)
  supervisor.py    → AgentSupervisor (IDLE / ENGAGED / DEGRADED)
  api.py           → Login, device registration, device list, commands
  runner.py        → main() + auto-restart wrapper
"""
