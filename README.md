# flowtriggers

Triggers that start the handlers of a flow engine when something happens
outside it. Each trigger is configured from a plain settings dictionary,
is given the handlers it serves in `initialize`, and is then run with
`start` and `stop`.

A handler is any object with a `settings` mapping, a `name` (where the
trigger uses one) and a `handle(data)` method that returns a result
mapping or `None`.

## Triggers

| Module | What starts a handler |
| --- | --- |
| `flowtriggers.rest` | An HTTP request matched by method and path, with CORS preflight support |
| `flowtriggers.cli` | A command-line invocation: a named command with its flags and arguments |
| `flowtriggers.tcpudp` | Data arriving on a TCP connection, split on an optional delimiter |
| `flowtriggers.timer` | A one-off or repeating timer, with an optional start delay |
| `flowtriggers.channel` | A message delivered by a named channel object you supply |
| `flowtriggers.loadtester` | A load test that calls one handler concurrently for a fixed time and prints statistics |

Supporting modules:

- `flowtriggers.rest_server` – the small threaded HTTP server (`Server`,
  `Request`, `Response`) the REST trigger runs on, with optional TLS and
  read/write timeouts.
- `flowtriggers.cors` – CORS preflight validation and response headers.

## Settings and data

Each trigger has its settings as dataclasses built with `from_dict`, and
the data passed to and returned by handlers as `Output` and `Reply`
dataclasses with `to_map` and `from_map`.

### REST

`rest.Trigger(config)` reads `config["settings"]`: `port` (required),
`enableTLS`, `certFile` and `keyFile`. Each handler's settings take a
`method` (`GET`, `POST`, `PUT`, `PATCH` or `DELETE`) and a `path`; paths
may hold `:name` segments and a trailing `*name` catch-all, matched by
`rest.Router`.

A handler receives the path parameters, query parameters, headers,
method and content of the request. Form bodies become a dictionary,
JSON bodies are decoded, multipart bodies give `{"body": None, "files": [...]}`
and anything else is passed as text. The reply may carry a `code` and
`data`: string data is sent as `application/json` if it parses as JSON
and as `text/plain` otherwise; other data is encoded as JSON. The status
defaults to 200. A handler error is answered with status 400.

### TCP

`tcpudp.Trigger` takes `port` (required), `network` (`tcp`, `tcp4` or
`tcp6`), `host`, `delimiter` and `timeout` in milliseconds. With a
delimiter each delimited record is passed to every handler; without one
the whole stream up to end of file is a single record. Non-empty replies
are joined with the delimiter and written back followed by a newline.
`address()` gives the bound host and port.

### Timer

Handler settings `startDelay` and `repeatInterval` take durations such as
`30s`, `1m` or `1h30m`, parsed by `timer.parse_duration` into seconds;
the trigger schedules in whole seconds. Without a repeat interval the
handler runs once, immediately or after the delay. `timer.Job` is the
background job it uses.

### Channel

`channel.Trigger.initialize(handlers, channels)` takes a mapping of
channel names to objects with a `register_callback(callback)` method;
each handler's `channel` setting must name one of them, otherwise
`LookupError` is raised. Messages are passed to the handler as
`{"data": message}`.

### Load tester

`loadtester.Trigger` takes `concurrency` (default 5), `duration` in
seconds (default 120), `startDelay` in seconds (default 30), `data` and
an optional `handler` name (otherwise the first handler is used).
`LoadTest.run` returns the aggregated `RequesterStats` and prints a
summary.

## CORS

CORS behaviour is read from environment variables under a prefix (the
REST trigger uses `REST_TRIGGER`):

| Variable (after the prefix) | Default |
| --- | --- |
| `CORS_ALLOW_ORIGIN` | `*` |
| `CORS_ALLOW_METHODS` | `POST, GET, OPTIONS, PUT, DELETE, PATCH` |
| `CORS_ALLOW_HEADERS` | `Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, X-Requested-With, Accept, Accept-Language` |
| `CORS_EXPOSE_HEADERS` | empty |
| `CORS_ALLOW_CREDENTIALS` | `false` |
| `CORS_MAX_AGE` | empty |

```python
from flowtriggers.cors import Cors, get_cors_allow_origin, is_valid_access_control_method

get_cors_allow_origin("REST_TRIGGER")                     # "*" unless overridden
is_valid_access_control_method("get", "REST_TRIGGER")     # True: compared case-insensitively
status, headers = Cors("REST_TRIGGER").handle_preflight({"Origin": "http://example.com"})
```

A preflight request without an `Origin` header, or asking for a method or
header that is not allowed, is answered with status 200 and only a
`Content-Type` header.

## Command-line trigger

`cli.Trigger` maps each handler to a command (an unnamed handler becomes
`default`). Flags are declared as `"name || default || usage"`; a default
of `true` or `false` makes a boolean flag. Besides the handlers' commands,
`help`, `help <command>` and `version` are handled. With the `singleCmd`
setting and no arguments the program runs its single handler directly.

`cli.invoke(argv)` runs the most recently created CLI trigger against the
command line and returns the reply as text; `cli.main(argv=None)` prints
that reply and returns an exit status, so it can serve as the entry point
of your own program once a trigger has been created and initialized.
The log level can be set with `FLOGO_LOG_LEVEL`.

## What this package does not do

- There is no engine, registry or configuration loader: you create each
  trigger and pass it its handler objects yourself.
- There is no message-broker trigger, and the socket trigger listens on
  TCP only; other networks are rejected.
- No command is installed; the CLI trigger only runs inside a program you
  write around `cli.main`.