# tlsnode

Building blocks for network nodes that talk over TLS. The package is a library with no command-line program.

## What is in the package

- `tlsnode.context_config`: `ContextConfig` reads an INI file with `init_config(path)`. The `common.ssl_type` key picks `ssl` (the default) or `sm_ssl`. The certificate file names come from the `[cert]` section, each joined to `ca_path`. A file that does not exist, or a file that cannot be read or parsed, raises `ConfigError`. The resolved names go into `cert_config` (`CertConfig`) or `sm_cert_config` (`SMCertConfig`).
- `tlsnode.context_builder`: `ContextBuilder.build_ssl_context(server, config)` takes either a `ContextConfig` or the path of an INI file and returns an `ssl.SSLContext`. The context is pinned to TLS 1.2 and requires a peer certificate. It does not check host names. When `config.is_cert_path` is false, the `CertConfig` fields hold PEM contents instead of file paths. A failure raises `SslContextError`.
- `tlsnode.node_info`:
  - `certificate_pub_hex(certificate)` returns the hex of a certificate's raw public-key bits.
  - `cert_file_to_pub_hex(path)` does the same for a PEM file and raises `ValueError` if the file cannot be read.
  - `node_id_from_der(der)` does the same for a peer certificate in DER form.
- `tlsnode.interfaces`:
  - `MessageFace` is an abstract message with `version`, `packet_type`, `seq`, `ext` and `payload`. It has `is_resp_packet()` and `set_resp_packet()`, which use `MessageExtFieldFlag.RESPONSE`.
  - `MessageFaceFactory` has `new_seq()`, which returns a UUID hex.
  - `EncodedMsg` holds an encoded message.
  - `NodeIPEndpoint` has `host`, `port`, `ipv6` and `from_address()`. Two endpoints compare equal, and sort, by the text of the host followed by the port.
- `tlsnode.rate_limiter`: `TimeWindowRateLimiter(max_permits_size, time_window_ms=1000, allow_exceed_max_permit_size=False)` has these methods:
  - `try_acquire(n)` takes permits if they are available now.
  - `acquire(n)` blocks until the permits are available. It returns `False` at once if `n` is above the maximum, unless exceeding the maximum is allowed.
  - `rollback(n)` gives permits back, up to the maximum.
- `tlsnode.timer`: `TimerFactory` runs a shared scheduler on a daemon worker thread. `create_timer(task, period_ms, delay_ms=0)` returns a `Timer`. When started, the timer does one of three things:
  - if `delay_ms` is set, it waits that long and then runs the task once or starts the period;
  - if only `period_ms` is set, it runs the task every `period_ms`;
  - if neither is set, it runs the task at once.

  Exceptions raised by a task are logged, not propagated. `TimerFactory` can be used as a context manager.
- `tlsnode.rate_reporter`: `RateReporter(module_name, interval_ms)` counts successes and failures and their byte sizes through `update(size, success)`.
  - After `start()`, every interval it logs a line with counts, Mb/s and QPS and then clears the interval counters.
  - `report()` returns that line.
  - `calc_avg_rate` and `calc_avg_qps` do the arithmetic.
- HTTP server (`tlsnode.http_server`, `http_session`, `http_stream`, `http_queue`, `http_common`): an asyncio HTTP/1.x server built on h11. It serves plain or TLS connections, and pipelined requests are answered in order through `ResponseQueue`.
  - Request bodies are limited to 100 MiB.
  - Each request body, as text, is passed to `request_handler(body, respond)`. Calling `respond(content_bytes)` sends a `200` keep-alive response with `Content-Type: application/json`. `respond` may be called later and from another thread.
  - With no handler set, the server answers `505`.
  - Over TLS, a session's `node_id` is the peer certificate's public-key hex.

## Install

```
pip install tlsnode
```

## Configuration file

```ini
[common]
ssl_type = ssl

[cert]
ca_path = ./conf
ca_cert = ca.crt
node_cert = node.crt
node_key = node.key
```

For `ssl_type = sm_ssl` the keys are `sm_ca_cert`, `sm_node_cert`, `sm_node_key`, `sm_ennode_cert` and `sm_ennode_key`.

## Example: a JSON echo server

```python
import asyncio
from tlsnode.context_builder import ContextBuilder
from tlsnode.http_server import HttpServerFactory

async def main():
    ctx = ContextBuilder().build_ssl_context(True, "./boostssl.ini")
    server = HttpServerFactory().build_http_server("127.0.0.1", 20200, ctx, "RPC")

    def handler(body, respond):
        respond(body.encode())

    server.request_handler = handler
    async with server:
        await asyncio.Event().wait()

asyncio.run(main())
```

For plain HTTP, set `server.disable_ssl = True` before starting it. Passing port `0` picks a free port, and `server.bound_port` reports which one.

## Example: rate limiting

```python
from tlsnode.rate_limiter import TimeWindowRateLimiter

limiter = TimeWindowRateLimiter(100, time_window_ms=1000)
if limiter.try_acquire(10):
    ...
limiter.acquire(5)  # blocks until the permits are available
```

## What the package does not do

- **`sm_ssl` contexts cannot be built.** `build_ssl_context` loads the signing and encryption certificate/key pairs and checks that they match, then raises `SslContextError`. Python's `ssl` module has no support for dual sign/encrypt certificates.
- **There is no websocket protocol.** A websocket upgrade request is handed to `ws_upgrade_handler(stream, request, node_id)` and the session stops reading. Without such a handler the connection is closed.
- **There is no message codec.** `MessageFace` and `MessageFaceFactory` are abstract: `encode`, `decode`, `length` and `build_message` must be supplied by a subclass.

## Tests

```
pip install -e ".[test]"
pytest
```