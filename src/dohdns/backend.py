from __future__ import annotations

from typing import Optional


class DoHError(Exception):
    """
    Brief: Base error for a failed DoH request.

    Inputs:
      - message: description used in log lines
      - status: optional HTTP status overriding the class default

    Outputs:
      - Exception instance carrying the HTTP status to answer with
    """

    status: int = 500

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        if status is not None:
            self.status = int(status)


class BackendError(DoHError):
    """
    Brief: Raised by a Backend when a query cannot be answered.

    Inputs:
      - message: description
      - status: 400 when the query itself is malformed, 500 for upstream or
        serialization failures

    Outputs:
      - Exception instance
    """


class Backend:
    """Base class for query backends.

    Brief:
      A Backend turns one wire-format DNS query into a wire-format DNS
      response. The request translator depends only on this interface.

    Inputs:
      - None.

    Outputs:
      - Backend instance.
    """

    def query(self, data: bytes) -> bytes:
        """Brief: Resolve a wire-format DNS query.

        Inputs:
          - data: wire-format DNS query bytes

        Outputs:
          - bytes: wire-format DNS response

        Raises:
          - BackendError carrying the HTTP status to report.
        """
        raise NotImplementedError
