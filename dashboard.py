import logging
import socket
import threading

from colorama import Fore
from flask import Flask, jsonify, render_template_string
from flask_cors import CORS

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5000
FALLBACK_PORT = 5050
HOST = "127.0.0.1"

PAGE = '''
<!DOCTYPE html>
<html>
<head>
    <title>framewatch - {{ package }}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
    <style>
        body {
            background: #181c24;
            color: #f4f4f4;
            font-family: 'Inter', Arial, sans-serif;
            margin: 0;
            padding: 0;
        }
        h1 { text-align: center; margin: 2rem 0 0.5rem 0; }
        .timestamp { text-align: center; color: #aaa; margin-bottom: 1.5rem; }
        .dashboard {
            display: flex;
            flex-wrap: wrap;
            justify-content: center;
            gap: 2rem;
            margin: 2rem auto;
            max-width: 1200px;
        }
        .card {
            background: #23283a;
            border-radius: 18px;
            box-shadow: 0 2px 12px #0002;
            padding: 1.5rem;
            min-width: 260px;
            flex: 1 1 300px;
        }
        .card.wide { flex-basis: 100%; }
        .card h2 { color: #8ecfff; font-size: 1.2rem; margin-top: 0; }
        .metric { font-size: 2rem; font-weight: 700; }
        .janky { color: #ff5252; }
    </style>
</head>
<body>
    <h1>{{ package }} on {{ device_id }}</h1>
    <div class="timestamp" id="elapsed">Waiting for data...</div>
    <div class="dashboard">
        <div class="card wide">
            <h2>Live frame timings (last {{ capacity }} frames - ms)</h2>
            <canvas id="framesChart" height="80"></canvas>
        </div>
        <div class="card">
            <h2>Frames</h2>
            <div class="metric" id="frameCount">--</div>
            <div class="janky" id="jankyFrames">--</div>
            <div id="renderTime">--</div>
        </div>
        <div class="card">
            <h2>Resources</h2>
            <div id="memory">--</div>
            <div id="cpu">--</div>
        </div>
        <div class="card wide">
            <h2>Frame timings distribution</h2>
            <canvas id="histogramChart" height="80"></canvas>
        </div>
    </div>
    <script>
    const fmt = v => (v === null || v === undefined) ? '--' : v.toFixed(2);
    let framesChart = null;
    let histogramChart = null;
    function drawCharts(frames) {
        const entries = frames.entries.slice().reverse();
        const labels = entries.map((_, i) => i);
        const labelsHist = Object.keys(frames.histogram);
        const counts = Object.values(frames.histogram);
        if (!framesChart) {
            framesChart = new Chart(document.getElementById('framesChart').getContext('2d'), {
                type: 'line',
                data: { labels: labels, datasets: [{ label: 'Render time (ms)', data: entries, borderColor: '#d68eff', tension: 0.2, pointRadius: 0 }] },
                options: { animation: false, plugins: { legend: { labels: { color: '#fff' } } },
                           scales: { x: { ticks: { color: '#aaa' } }, y: { ticks: { color: '#aaa' }, beginAtZero: true } } }
            });
            histogramChart = new Chart(document.getElementById('histogramChart').getContext('2d'), {
                type: 'bar',
                data: { labels: labelsHist, datasets: [{ label: 'Frames', data: counts, backgroundColor: '#8ecfff' }] },
                options: { animation: false, plugins: { legend: { labels: { color: '#fff' } } },
                           scales: { x: { ticks: { color: '#aaa' } }, y: { ticks: { color: '#aaa' }, beginAtZero: true } } }
            });
        } else {
            framesChart.data.labels = labels;
            framesChart.data.datasets[0].data = entries;
            framesChart.update();
            histogramChart.data.datasets[0].data = counts;
            histogramChart.update();
        }
    }
    function fetchStats() {
        fetch('/api/stats').then(r => r.ok ? r.json() : null).then(data => {
            if (!data) return;
            const frames = data.frames;
            document.getElementById('elapsed').textContent = 'Running for ' + data.elapsedSeconds.toFixed(1) + 's';
            document.getElementById('frameCount').textContent = frames.nbOfEntries + ' frames';
            document.getElementById('jankyFrames').textContent = 'Janky: ' + frames.jankyFrames + ' (' + fmt(frames.jankyPercent) + '%)';
            document.getElementById('renderTime').textContent = 'Max ' + fmt(frames.max) + 'ms / Min ' + fmt(frames.min) + 'ms / Avg ' + fmt(frames.average) + 'ms';
            if (data.memory) document.getElementById('memory').textContent = 'Memory: ' + fmt(data.memory.entries[0]) + ' MB (avg ' + fmt(data.memory.average) + ')';
            if (data.cpu) document.getElementById('cpu').textContent = 'CPU: ' + fmt(data.cpu.entries[0]) + '% (avg ' + fmt(data.cpu.average) + ')';
            drawCharts(frames);
        });
    }
    setInterval(fetchStats, {{ refresh_ms }});
    fetchStats();
    </script>
</body>
</html>
'''


def create_app(session):
    """Flask app serving the latest snapshot of a running PollSession."""
    app = Flask(__name__)
    CORS(app)
    # Histogram buckets must keep their threshold order in the JSON.
    app.json.sort_keys = False

    @app.route('/')
    def index():
        return render_template_string(
            PAGE,
            package=session.config.package,
            device_id=session.config.device_id,
            capacity=session.config.capacity,
            refresh_ms=max(int(session.config.poll_interval * 1000), 200),
        )

    @app.route('/api/stats')
    def api_stats():
        snapshot = session.latest_snapshot()
        if snapshot is None:
            return jsonify({'status': 'error', 'message': 'No data collected yet'}), 503
        return jsonify(snapshot.to_dict())

    @app.route('/api/health')
    def api_health():
        return jsonify({
            'status': 'ok',
            'state': session.state.value,
            'ticks': session.tick_count,
        })

    return app


def port_available(port, host=HOST):
    """True if nothing is listening on ``host:port`` yet."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def choose_port(port, host=HOST):
    """Return ``port``, or FALLBACK_PORT when something already holds it."""
    if port_available(port, host):
        return port
    logger.warning("Port %s in use or unavailable, trying fallback port %s", port, FALLBACK_PORT)
    print(f"{Fore.YELLOW}Port {port} is busy, serving the dashboard on {FALLBACK_PORT} instead.{Fore.RESET}")
    return FALLBACK_PORT


def _serve(app, port):
    # werkzeug exits instead of raising when it cannot bind, so pick the port up front
    port = choose_port(port)
    logger.info("Web dashboard on http://localhost:%s", port)
    try:
        app.run(host=HOST, port=port, use_reloader=False)
    except SystemExit:
        logger.error("Web dashboard could not start on port %s", port)


def serve_in_background(session, port=DEFAULT_PORT):
    """Start the web dashboard in a daemon thread next to the poll loop."""
    app = create_app(session)
    thread = threading.Thread(target=_serve, args=(app, port), daemon=True, name="framewatch-web")
    thread.start()
    return thread
