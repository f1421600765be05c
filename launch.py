import subprocess
import sys
import time
import webbrowser
import requests

from config import FFMPEG_BIN, FFPROBE_BIN, HOST, PORT, YT_DLP_BIN

# === ⚙️ SETTINGS ===
DEFAULT_RETRIES = 20
DEFAULT_DELAY = 1


# === 🧾 LOGGING ===
def log(status: str, message: str, end="\n"):
    icons = {
        "info": "ℹ️ ",
        "success": "✅",
        "error": "❌",
        "action": "🔧",
        "waiting": "⏳",
        "build": "🚀",
    }
    print(f"\r{icons.get(status, '❔')} {message}", end=end, flush=True)


# === 🧰 TOOLS ===
def check_tools():
    log("action", "Checking yt-dlp, ffmpeg & ffprobe...", end="")
    for name, cmd in [
        ("yt-dlp", [YT_DLP_BIN, "--version"]),
        ("ffmpeg", [FFMPEG_BIN, "-version"]),
        ("ffprobe", [FFPROBE_BIN, "-version"]),
    ]:
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.DEVNULL, timeout=30)
        except (OSError, subprocess.SubprocessError):
            log("error", f"{name} not found or not runnable ({cmd[0]}).")
            sys.exit(1)
    log("success", "yt-dlp, ffmpeg and ffprobe available.")


def ensure_browser():
    log("action", "Installing Playwright Chromium (if missing)...", end="")
    try:
        subprocess.run(
            [sys.executable, "-m", "playwright", "install", "chromium"],
            check=True,
            stdout=subprocess.DEVNULL,
        )
        log("success", "Chromium ready.")
    except subprocess.CalledProcessError:
        log("error", "Playwright could not install Chromium.")
        sys.exit(1)


# === 🚀 SERVER ===
def start_server(host: str, port: int):
    log("build", f"Starting API on {host}:{port}")
    return subprocess.Popen(
        [
            sys.executable,
            "-m",
            "uvicorn",
            "main:app",
            "--host",
            host,
            "--port",
            str(port),
        ]
    )


# === ⏳ WAITERS ===
def wait_for_service(
    host: str, port: int, process, retries=DEFAULT_RETRIES, delay=DEFAULT_DELAY
):
    url = f"http://{host}:{port}/health"
    msg = f"Waiting for {url}"
    log("waiting", msg, end="")

    dots = ""
    for _ in range(retries):
        if process.poll() is not None:
            log("error", f"Server exited early (exit {process.returncode}).")
            sys.exit(1)
        try:
            if requests.get(url, timeout=2).status_code == 200:
                print("\r" + " " * (len(msg) + len(dots) + 4), end="\r")
                log("success", f"{url} is ready.")
                return
        except requests.RequestException:
            pass

        dots += "."
        print(f"\r⏳ {msg}{dots}", end="", flush=True)
        time.sleep(delay)

    log("error", f"Timeout waiting for {url}")
    process.terminate()
    sys.exit(1)


# === 🌐 BROWSER ===
def open_browser(url):
    log("action", f"Opening browser at {url}")
    webbrowser.open(url)


# === 🚀 MAIN ===
def main():
    log("info", "=== 🎧 Search & Convert Bootstrap ===")
    check_tools()
    ensure_browser()
    server = start_server(HOST, PORT)
    wait_for_service(HOST, PORT, server)
    open_browser(f"http://{HOST}:{PORT}/docs")
    log("success", "🎉 All systems operational!")
    try:
        server.wait()
    except KeyboardInterrupt:
        log("info", "Shutting down...")
        server.terminate()


if __name__ == "__main__":
    main()
