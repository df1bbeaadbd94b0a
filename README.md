# labkv

labkv is a toolkit for trying out distributed-systems ideas on one machine.
It has these parts:

- **A simulated RPC network** (`labkv.labrpc`). A `Network` holds named
  `ClientEnd`s and `Server`s. Each `Server` carries one or more `Service`s.
  The network can be made unreliable (`set_reliable(False)`), which drops
  and delays requests and replies. It can also delay replies for a long
  time (`set_long_reordering`), disconnect single ends (`enable`) or delete
  servers (`delete_server`). It counts RPCs (`get_count`,
  `get_total_count`) and bytes sent (`get_total_bytes`). When no reply
  arrives, `ClientEnd.call` raises `RPCError`.
- **Serialisation** (`labkv.labgob`). `encode_value` and `decode_value`,
  or `LabEncoder` and `LabDecoder` over a binary stream, turn values into
  self-contained bytes and back. Dataclasses and enums are supported once
  registered with `register` or `register_name`. Dataclass fields whose
  names start with an underscore are not sent and are reported;
  `error_count()` tells how many problems were reported.
- **Key/value message types** (`labkv.rpc`): `Err`, `PutArgs`, `PutReply`,
  `GetArgs` and `GetReply`.
- **A model of one versioned key** (`labkv.models`). `KvInput`, `KvOutput`,
  `KvState` and `Operation` describe recorded operations; `partition`
  splits a history by key, `init_state` gives the starting state, `step`
  says whether one operation is legal and returns the next state, and
  `describe_operation` formats an operation for people to read.
- **MapReduce** (`labkv.coordinator`, `labkv.worker`, `labkv.mrapps`,
  `labkv.mrproto`). A coordinator hands out map and reduce tasks over a
  UNIX-domain socket. It hands out again any task whose worker stops
  sending heartbeats. Workers run map and reduce functions taken from an
  application in `labkv.mrapps`.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## The simulated network

A handler is a public method of the served object that takes one argument
and returns the reply. It is called as `"ClassName.method"`.

```python
from labkv.labrpc import Network, Server, Service


class Echo:
    def shout(self, text):
        return text.upper()


with Network() as net:
    end = net.make_end("client")
    server = Server()
    server.add_service(Service(Echo()))
    net.add_server("srv", server)
    net.connect("client", "srv")
    net.enable("client", True)
    print(end.call("Echo.shout", "hi"))  # HI
```

A new end is disabled and unconnected until `connect` and `enable` are
called; calls through it fail with `RPCError`.

## MapReduce from the command line

The applications that come with the package are `wc` (word count) and
`indexer` (inverted index). There are also the test applications `crash`,
`nocrash`, `early_exit`, `jobcount`, `mtiming` and `rtiming`. An
application may also be named by a path such as `../mrapps/wc.so`; only
the file name's stem is used to pick it.

Start a coordinator with the input files. It uses 10 reduce tasks and
listens on `/var/tmp/5840-mr-<uid>`:

```
labkv-mrcoordinator pg-*.txt
```

Then start as many workers as you like, each in its own terminal:

```
labkv-mrworker wc
```

Map tasks write intermediate files named `mr-<map>-<reduce>` in the
working directory. Each reduce task writes `mr-out-<n>`, one line
`<key> <reduced value>` per key, in key order. Workers exit once the
coordinator reports the job finished, and the coordinator exits once every
reduce task has completed.

To see the combined result:

```
cat mr-out-* | sort
```

## MapReduce from Python

`labkv.worker.map_task` and `labkv.worker.reduce_task` run a single task
in the current directory, and `labkv.worker.worker(mapf, reducef,
sockname)` runs tasks from a coordinator started with
`labkv.coordinator.make_coordinator(files, n_reduce)`. `mrproto.serve` and
`mrproto.call` serve any object's public one-argument methods over a
UNIX-domain socket.

## Error values

Key/value operations are described by one of the `Err` values:

- `OK`
- `ErrNoKey`
- `ErrVersion`
- `ErrMaybe`
- `ErrWrongLeader`
- `ErrWrongGroup`

## What the package does not do

- It has no key/value server or client: `labkv.rpc` holds only the
  message and error types such a service would exchange.
- It has no distributed lock.
- It has no helpers for running concurrent test clients or recording
  their operations, and no checker that searches a whole history for a
  legal order; `labkv.models` only judges one operation at a time.
- It has no command that runs a MapReduce job sequentially in one
  process; jobs run through the coordinator and workers.