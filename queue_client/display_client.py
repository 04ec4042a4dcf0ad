# queue_client/display_client.py
# terminal display board: polls the server's display endpoints on a fixed interval
import argparse
import sys
import threading
import time

import requests

DEFAULT_SERVER = "http://127.0.0.1:8000"
DEFAULT_INTERVAL = 5.0


class DisplayBoard:
    def __init__(self, server_url, branch_id=None, interval=DEFAULT_INTERVAL, session=None):
        self.server_url = server_url.rstrip("/")
        self.branch_id = branch_id
        self.interval = interval
        self.session = session or requests.Session()
        self.now_serving = []
        self.waiting = []
        self.error = None
        self.updated_at = None

    def _get(self, path):
        params = {"branchId": self.branch_id} if self.branch_id is not None else None
        r = self.session.get(f"{self.server_url}{path}", params=params, timeout=5)
        r.raise_for_status()
        return r.json()

    def refresh(self):
        """Fetch both boards; on failure keep the last data and remember the error."""
        try:
            now_serving = self._get("/api/display/now-serving")
            waiting = self._get("/api/display/waiting-queue")
        except requests.RequestException as e:
            self.error = str(e)
            return False
        self.now_serving = now_serving
        self.waiting = waiting
        self.error = None
        self.updated_at = time.strftime("%H:%M:%S")
        return True

    def render(self):
        lines = ["NOW SERVING"]
        if self.now_serving:
            for row in self.now_serving:
                lines.append(f"  {row['token_number']:<8} {row.get('counter_name') or '-':<12} "
                             f"{row.get('service_name') or ''}")
        else:
            lines.append("  (none)")
        lines.append("")
        lines.append("WAITING")
        if self.waiting:
            for row in self.waiting:
                pos = row.get("position_in_queue")
                lines.append(f"  {pos if pos is not None else '-':>3}. {row['token_number']:<8} "
                             f"~{row.get('estimated_wait_time') or 0} min  "
                             f"{row.get('service_name') or ''}")
        else:
            lines.append("  (empty)")
        lines.append("")
        if self.error:
            lines.append(f"connection problem: {self.error}")
        if self.updated_at:
            lines.append(f"updated {self.updated_at}")
        return "\n".join(lines)

    def run(self, out=sys.stdout, stop_event=None):
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.refresh()
            out.write("\x1b[2J\x1b[H" + self.render() + "\n")
            out.flush()
            stop_event.wait(self.interval)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Queue display board")
    parser.add_argument("--server", default=DEFAULT_SERVER)
    parser.add_argument("--branch", type=int, default=None)
    parser.add_argument("--interval", type=float, default=DEFAULT_INTERVAL)
    args = parser.parse_args(argv)

    board = DisplayBoard(args.server, branch_id=args.branch, interval=args.interval)
    try:
        board.run()
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    main()
