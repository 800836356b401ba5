# sagaflow

sagaflow coordinates one database transaction across several services. It
has three parts:

- **orchestrator** (`sagaflow-orchestrator`): a gRPC server. It opens database
  transactions, keeps each one open under a correlation ID, and uses Redis
  pub/sub to commit or roll back every participant together.
- **order service** (`sagaflow-order`): an HTTP API, `POST /api/v1/order`. It
  inserts an order and its detail lines through the orchestrator, and calls
  the product service to reduce the stock of each product ordered.
- **product service** (`sagaflow-product`): an HTTP API, `PUT /api/v1/product`.
  It reduces a product's quantity through the orchestrator.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running

Each command reads a YAML configuration file. The default is
`./config/config.yaml`. Use `--config_path` to choose another file.

### Orchestrator

```
sagaflow-orchestrator --config_path ./config/config.yaml
```

```yaml
server:
  g_port: 50051
database:
  driver: postgres
  host: localhost
  port: 5432
  user: user
  db_name: shop
  password: password
redis:
  addr: localhost:6379
  password: password
  db: 0
  max_retries: 3
```

Notes on these settings:

- The database connection always uses port 5432, with SSL disabled. The
  `database.port` value is read but not used.
- The driver `postgres` is treated as `postgresql`.
- The Redis address defaults to `localhost:6379`.
- A `max_retries` of 0, or no `max_retries` at all, means 3 retries.

The server listens on `0.0.0.0:<g_port>`. Ctrl+C stops it at once and cancels
any calls still in progress. `--graceful_timeout` is accepted but has no
effect on this command.

### Order and product services

```
sagaflow-order --config_path ./config/order.yaml
sagaflow-product --config_path ./config/product.yaml
```

```yaml
grpc:
  address: localhost:50051
server:
  port: 8081
```

Each service listens on `0.0.0.0:<server.port>` and connects to the
orchestrator at `grpc.address`.

The order service sends product updates to
`http://localhost:8082/api/v1/product`, so the product service has to listen
on port 8082.

Ctrl+C stops a service. It closes the gRPC channel, then waits for the HTTP
server to stop for up to the graceful timeout. The default timeout is 15
seconds, and the value takes Go-style durations such as `15s`, `1m` or
`1m30s`. The flag is spelled differently for each service:

- `--graceful-timeout` for the order service
- `--graceful_timeout` for the product service

### HTTP requests and replies

Placing an order:

```json
{
  "header": {"correlationID": "order-42"},
  "body": {
    "phoneNumber": "000",
    "name": "Sample Customer",
    "address": "1 Sample Street",
    "totalPrice": 30.0,
    "orderDetails": [
      {"productID": 1, "quantity": 3, "price": 10.0, "totalPrice": 30.0}
    ]
  }
}
```

On success the reply is `{"id": "<order id>"}`.

Updating a product:

```json
{"header": {"correlationID": "order-42"}, "body": {"id": 1, "quantity": 3}}
```

On success the reply is `{"id": 1}`.

Errors come back as `{"code": <status>, "message": "..."}`:

- 400 when the request body cannot be decoded
- 500 when the saga fails

Both services answer CORS requests from any origin for the methods GET, HEAD,
POST, PUT, OPTIONS and DELETE.

## How a transaction completes

1. A service calls `BeginTx` with a correlation ID. The orchestrator opens a
   database transaction and stores it under `<correlationID>_<txRandomID>`. In
   Redis it sets that key to `F` (not yet committed), with a 30-second expiry.
2. The service does its work through the orchestrator's `InsertOrder`,
   `InsertOrderDetail` and `UpdateProduct` RPCs, inside that transaction.
3. On `Commit`, the key is set to `T`. When every key
   `<correlationID>_*` is `T`, the orchestrator publishes a commit on the
   correlation ID's channel, and every open transaction under that
   correlation ID commits.
4. Every transaction under the correlation ID rolls back in any of these
   cases:
   - a participant calls `Rollback`
   - a step fails
   - a malformed message arrives
   - no action arrives within 30 seconds

Actions go over Redis as JSON: `{"correlationID": "...", "action": "C"}`
for commit and `"R"` for rollback.

The order service runs as one saga. If any step fails, it asks the
orchestrator to roll back:

1. It opens a transaction.
2. It inserts the order.
3. It sends one product update per detail line.
4. It inserts the detail lines.
5. It commits.

A product update counts as failed when the reply carries no `id`. The product
service opens and commits its own transaction under the same correlation ID.

## RPC services

`sagaflow.rpc` registers three gRPC services:

| Service | Methods |
| --- | --- |
| `transaction.Transaction` | `BeginTx`, `Commit`, `Rollback` |
| `order.Order` | `InsertOrder`, `InsertOrderDetail` |
| `product.Product` | `UpdateProduct` |

Messages are encoded as JSON, not as protocol buffers. Use the clients in
`sagaflow.rpc`, which are `TransactionClient`, `OrderClient` and
`ProductClient`, to talk to the orchestrator.

## Library use

The building blocks can be used from Python as well:

- `sagaflow.config`: `read_orchestrator_config`, `read_service_config`
- `sagaflow.db`: `DBConfig`, `connection_url`, `new_db`
- `sagaflow.txcache`: `TransactionCache`
- `sagaflow.redis_service`: `RedisService`
- `sagaflow.transactions`: `TransactionService`, `TransactionGService`
- `sagaflow.repositories`: `OrderRepository`, `ProductRepository` and their
  `OrderGService` and `ProductGService` wrappers
- `sagaflow.http_util`: `Route`, `build_app`, `cors`, `json_response`,
  `error_response`, `get_json`, `post_json`, `put_json`
- `sagaflow.order_service` and `sagaflow.product_service`: the services,
  their handlers and `new_router`
- `sagaflow.messages`: the message dataclasses

## What it does not do

- It does not create database tables. The tables `orders`, `order_detail`
  and `product` must already exist.
- The product service URL used by `sagaflow-order` is fixed. The
  `OrderService` class accepts another URL, but the command does not offer a
  setting for it.
- The only other expiry is the 30-second limit on settling a transaction. An
  open transaction waits for an action until then.