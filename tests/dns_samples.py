"""
Brief: Sample DNS queries and a stub upstream resolver shared by tests.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading

from dnslib import QTYPE, RR, A, DNSError, DNSRecord

# www.example.com IN A, transaction id 0.
WWW_QUERY = bytes(
    [0x0, 0x0, 0x1, 0x0, 0x0, 0x1, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x3, 0x77, 0x77, 0x77,
     0x7, 0x65, 0x78, 0x61, 0x6D, 0x70, 0x6C, 0x65, 0x3, 0x63, 0x6F, 0x6D, 0x0, 0x0, 0x1,
     0x0, 0x1]
)
WWW_QUERY_B64 = "AAABAAABAAAAAAAAA3d3dwdleGFtcGxlA2NvbQAAAQAB"

# noresponse.example.com IN A; the stub resolver never answers it.
NORESPONSE_QUERY = bytes(
    [0x0, 0x0, 0x1, 0x0, 0x0, 0x1, 0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0xA, 0x6E, 0x6F, 0x72,
     0x65, 0x73, 0x70, 0x6F, 0x6E, 0x73, 0x65, 0x7, 0x65, 0x78, 0x61, 0x6D, 0x70, 0x6C,
     0x65, 0x3, 0x63, 0x6F, 0x6D, 0x0, 0x0, 0x1, 0x0, 0x1]
)
NORESPONSE_QUERY_B64 = "AAABAAABAAAAAAAACm5vcmVzcG9uc2UHZXhhbXBsZQNjb20AAAEAAQ"



class StubResolver:
    """
    Brief: Local UDP DNS server answering www.example.com A with 127.0.0.1.

    Inputs:
      - None

    Outputs:
      - Running stub with .host and .port; every other name is left
        unanswered so clients time out.
    """

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.host, self.port = self.sock.getsockname()
        self.received = []
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self._loop, daemon=True)

    def start(self):
        self.thread.start()

    def _loop(self):
        self.sock.settimeout(0.1)
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(4096)
            except OSError:
                continue
            try:
                request = DNSRecord.parse(data)
            except DNSError:
                continue
            self.received.append(request)
            q = request.q
            if q.qtype != QTYPE.A or str(q.qname) != "www.example.com.":
                continue
            reply = request.reply()
            reply.add_answer(RR(q.qname, QTYPE.A, rdata=A("127.0.0.1"), ttl=60))
            self.sock.sendto(reply.pack(), peer)

    def close(self):
        self._stop.set()
        self.thread.join(timeout=1.0)
        self.sock.close()


