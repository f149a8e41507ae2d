"""
tcpdrop — streaming multi-file transfer over a plain TCP byte stream.

Modules
───────
  protocol    — Frame codec: "<path>\\n<size>\\n\\n" header + raw body, sentinel frame
  pump        — Chunked file ⇄ socket copy loops
  connection  — Endpoint resolution with fallback, retry wrapper, listener
  session     — Per-connection state machine + session table
  sender      — TransferSender: queue of files dispatched over many connections
  server      — TransferServer: accept loop, one ReceiverSession per connection
  files       — Directory walk into descriptors, FileSink for received paths
  metrics     — Per-session byte counters and run summary
  config      — Defaults and ReceiverConfig / SenderConfig
  errors      — TransferError hierarchy
  cli         — argparse CLI: start / send subcommands
"""

__version__ = "1.0.0"
