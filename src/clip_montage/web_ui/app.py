"""
Clip Montage Web Interface

Flask JSON API for submitting montage jobs, polling their status and
downloading the finished files.
"""

import os
from typing import Optional

from flask import Flask, current_app, jsonify, request, send_file

from .._version import __version__
from ..config import Settings, get_settings
from ..core.job_store import create_job_store
from ..downloader import normalize_source_url
from ..ffmpeg_utils import VideoEncodingParams
from ..file_ops import build_safe_path
from ..job_tracker import JobReaper, JobTracker
from ..logger import logger
from ..pipeline import JobRunner, MontagePipeline, with_seed
from ..script_export import render_script, script_name
from .decorators import api_endpoint, require_json
from .job_options import normalize_request

EXTENSION_KEY = "clip_montage"


def build_runner(settings: Settings) -> JobRunner:
    """Wire store, tracker, pipeline and runner from settings."""
    store = create_job_store(settings.jobs)
    tracker = JobTracker(store, retention_seconds=settings.jobs.retention_seconds)
    pipeline = MontagePipeline(tracker, settings=settings)
    return JobRunner(pipeline, max_workers=settings.jobs.max_concurrent_jobs)


def _runner() -> JobRunner:
    return current_app.extensions[EXTENSION_KEY]


def create_app(
    runner: Optional[JobRunner] = None,
    settings: Optional[Settings] = None,
    start_reaper: bool = True,
) -> Flask:
    """
    Application factory.

    Args:
        runner: Preconfigured JobRunner (tests inject one with fakes)
        settings: Settings; defaults to the environment
        start_reaper: Start the background purge thread
    """
    settings = settings or get_settings()
    runner = runner or build_runner(settings)

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.extensions[EXTENSION_KEY] = runner
    app.config["OUTPUT_DIR"] = settings.paths.output_dir

    if start_reaper:
        reaper = JobReaper(runner.tracker, interval=settings.jobs.purge_interval)
        reaper.start()
        app.extensions["clip_montage_reaper"] = reaper

    _register_routes(app)
    return app


def _register_routes(app: Flask) -> None:

    @app.route('/health')
    def health():
        """Liveness check."""
        return jsonify({"status": "ok", "version": __version__})

    @app.route('/api/montage', methods=['POST'])
    @api_endpoint
    def api_create_montage():
        """Validate a submission and queue it. Returns immediately."""
        montage_request = normalize_request(request.get_json(silent=True) or request.form.to_dict())
        job = _runner().submit(montage_request)
        return jsonify({"jobId": job.id, "status": job.status.value}), 202

    @app.route('/api/jobs/<job_id>', methods=['GET'])
    @api_endpoint
    def api_get_job(job_id):
        job = _runner().tracker.get(job_id)
        return jsonify(job.to_status_payload())

    @app.route('/api/jobs/<job_id>', methods=['DELETE'])
    @api_endpoint
    def api_cancel_job(job_id):
        """Request cooperative cancellation of a queued or running job."""
        accepted = _runner().cancel(job_id)
        return jsonify({"jobId": job_id, "cancelRequested": accepted}), 202

    @app.route('/downloads/<filename>', methods=['GET'])
    @api_endpoint
    def download(filename):
        """Serve a persisted montage."""
        path = build_safe_path(app.config["OUTPUT_DIR"], filename)
        if path is None or not path.is_file():
            logger.warning(f"Download requested but file not found: {filename}")
            return jsonify({"error": f"File not found: {filename}"}), 404

        mimetype = 'video/mp4' if path.suffix == '.mp4' else None
        return send_file(path, as_attachment=True, download_name=path.name, mimetype=mimetype)

    @app.route('/api/duration', methods=['POST'])
    @api_endpoint
    @require_json('url')
    def api_duration():
        """Probe a source URL, falling back to the per-source default."""
        pipeline = _runner().pipeline
        url = normalize_source_url(request.get_json()["url"])
        duration, used_fallback = pipeline.downloader.resolve_duration(
            url, url, pipeline.toolkit.probe_duration
        )
        return jsonify({"duration": duration, "fallback": used_fallback})

    @app.route('/api/montage/script', methods=['POST'])
    @api_endpoint
    def api_montage_script():
        """Plan a submission and return it as a standalone bash script."""
        montage_request = with_seed(normalize_request(request.get_json(silent=True) or {}))
        pipeline = _runner().pipeline
        plans, urls = pipeline.plan_remote(montage_request)
        content = render_script(
            montage_request, plans, urls,
            encoding=VideoEncodingParams.from_config(pipeline.settings.encoding),
            min_clip_bytes=pipeline.settings.clips.min_clip_bytes,
            shrink_factor=pipeline.settings.clips.stack_shrink_factor,
        )
        return jsonify({"scriptName": script_name(montage_request), "scriptContent": content})


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get("PORT", "5000")), debug=False)
