import io
import socket
import threading
import typing as t


class StubMemcacheServer:
    """Memcache text protocol server for `get`, `set` & `delete`, runs in background threads.

    `stop` drops open connections and stops listening, so the clients see a dead server.
    """

    def __init__(self) -> None:
        self.__listener = socket.create_server(("127.0.0.1", 0))
        self.__listener.settimeout(0.05)
        self.__stopped = threading.Event()
        self.__lock = threading.Lock()
        self.__connections = set[socket.socket]()
        self.__threads = list[threading.Thread]()
        self.__data = dict[bytes, bytes]()
        self.accept_writes = True

    @property
    def address(self) -> str:
        host, port = self.__listener.getsockname()[:2]
        return f"{host}:{port}"

    def start(self) -> None:
        self.__spawn(self.__accept)

    def stop(self) -> None:
        self.__stopped.set()

        with self.__lock:
            connections = list(self.__connections)

        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

        for thread in self.__threads:
            thread.join(timeout=1.0)

        self.__listener.close()

    def __spawn(self, target: t.Callable[..., None], *args: object) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        self.__threads.append(thread)
        thread.start()

    def __accept(self) -> None:
        while not self.__stopped.is_set():
            try:
                conn, _ = self.__listener.accept()
            except TimeoutError:
                continue

            with self.__lock:
                self.__connections.add(conn)

            self.__spawn(self.__serve, conn)

    def __serve(self, conn: socket.socket) -> None:
        try:
            with conn, conn.makefile("rb") as reader:
                while line := reader.readline():
                    conn.sendall(self.__handle(line.split(), reader))

        except OSError:
            pass

        finally:
            with self.__lock:
                self.__connections.discard(conn)

    def __handle(self, parts: list[bytes], reader: io.BufferedReader) -> bytes:
        match parts:
            case [b"get" | b"gets", *keys]:
                values = [
                    b"VALUE %s 0 %d\r\n%s\r\n" % (key, len(self.__data[key]), self.__data[key])
                    for key in keys
                    if key in self.__data
                ]
                return b"".join(values) + b"END\r\n"

            case [b"set", key, _, _, size, *noreply]:
                value = reader.read(int(size) + 2)[:-2]
                if self.accept_writes:
                    self.__data[key] = value

                if noreply:
                    return b""

                return b"STORED\r\n" if self.accept_writes else b"NOT_STORED\r\n"

            case [b"delete", key, *noreply]:
                found = self.__data.pop(key, None) is not None
                if noreply:
                    return b""

                return b"DELETED\r\n" if found else b"NOT_FOUND\r\n"

            case _:
                return b"ERROR\r\n"
