import time
import statistics

import cv2
from flask import Flask, Response, request, jsonify, send_from_directory
import mediapipe as mp

import jewelry_config as cfg
from camera_async import AsyncVideoCapture
from jewelry_catalog import JewelryCatalog, kind_for
from jewelry_config import TuningParameters
from jewelry_render import JEWELRY_KINDS, load_asset
from segmentation_async import AsyncSegmenter, create_selfie_segmenter
from tryon_session import TryAllRunner, TryOnSession

PERF_WINDOW = 60


def create_face_mesh():
    return mp.solutions.face_mesh.FaceMesh(max_num_faces=1, refine_landmarks=True,
                                           min_detection_confidence=0.6,
                                           min_tracking_confidence=0.6)


def detect_landmarks(face_mesh, frame):
    """First face's landmark list, or None when no face is found."""
    res = face_mesh.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
    if not res.multi_face_landmarks:
        return None
    return res.multi_face_landmarks[0].landmark


def generate_stream(session, face_mesh, segmenter=None, cap=None):
    cap = cap or AsyncVideoCapture(src=cfg.CAM_INDEX, width=cfg.W_CAP, height=cfg.H_CAP,
                                   mirror=cfg.H_MIRROR)
    if cap.wait_first_frame():
        w, h = cap.frame_size()
        print(f"[INFO] Camera delivering {w}x{h}")
    else:
        print("[WARNING] No camera frame yet, streaming will start when one arrives")
    if segmenter is not None and not segmenter.available:
        segmenter = None
    last_frame_id = -1

    fps_ema = 0.0
    t_prev = time.perf_counter()
    perf_counter = 0
    perf_times = {'cap': [], 'mediapipe': [], 'render': [], 'jpeg': [], 'total': []}

    try:
        while True:
            frame_id = cap.frame_id
            if frame_id == last_frame_id:
                # already rendered this one
                time.sleep(0.002)
                continue
            last_frame_id = frame_id
            t_frame_start = time.perf_counter()

            t1 = time.perf_counter()
            ok_cap, frame = cap.read()
            t_cap = (time.perf_counter() - t1) * 1000
            if not ok_cap or frame is None:
                time.sleep(0.01)
                continue

            t3 = time.perf_counter()
            landmarks = detect_landmarks(face_mesh, frame)
            t_mp = (time.perf_counter() - t3) * 1000

            if segmenter is not None and landmarks is not None:
                segmenter.submit(frame)

            t_render_start = time.perf_counter()
            out = session.process_frame(frame, landmarks)
            t_render = (time.perf_counter() - t_render_start) * 1000

            t = time.perf_counter()
            dt = t - t_prev
            t_prev = t
            if dt > 0:
                fps = 1.0 / dt
                fps_ema = fps if fps_ema == 0 else 0.9*fps_ema + 0.1*fps

            t5 = time.perf_counter()
            ok, buf = cv2.imencode('.jpg', out, [cv2.IMWRITE_JPEG_QUALITY, cfg.JPEG_QUALITY])
            t_jpeg = (time.perf_counter() - t5) * 1000

            perf_times['cap'].append(t_cap)
            perf_times['mediapipe'].append(t_mp)
            perf_times['render'].append(t_render)
            perf_times['jpeg'].append(t_jpeg)
            perf_times['total'].append((time.perf_counter() - t_frame_start) * 1000)

            perf_counter += 1
            if perf_counter % PERF_WINDOW == 0:
                print(f"\n{'='*60}")
                print(f"Performance Analysis (Average of the past {PERF_WINDOW} frames, Frame #{perf_counter})")
                print(f"{'='*60}")
                print(f"{'Camera readout':<20s}: {statistics.mean(perf_times['cap']):6.2f}ms")
                print(f"{'FaceMesh detection':<20s}: {statistics.mean(perf_times['mediapipe']):6.2f}ms")
                print(f"{'Rendering pipeline':<20s}: {statistics.mean(perf_times['render']):6.2f}ms")
                print(f"{'JPEG encoding':<20s}: {statistics.mean(perf_times['jpeg']):6.2f}ms")
                print(f"{'-'*60}")
                print(f"{'Average frame time':<20s}: {statistics.mean(perf_times['total']):6.2f}ms")
                print(f"{'Displayed FPS':<20s}: {fps_ema:6.2f}")
                print(f"{'Camera read FPS':<20s}: {cap.get_read_fps():6.2f}")
                status = session.status()
                print(f"{'Occluded frames':<20s}: {status['occludedFrames']}/{status['frames']}")
                if status["maskAgeMs"] is not None:
                    print(f"{'Mask age':<20s}: {status['maskAgeMs']:6d}ms")
                print(f"{'='*60}\n")
                for key in perf_times:
                    perf_times[key] = []

            if not ok: continue
            yield (b'--frame\r\nContent-Type: image/jpeg\r\n\r\n' + buf.tobytes() + b'\r\n')
    finally:
        cap.release()


def _bad_request(err):
    return jsonify(ok=False, err=err), 400


def create_app(session, catalog, runner, stream_factory=None):
    app = Flask(__name__, static_folder=None)

    @app.route("/")
    def root():
        return send_from_directory(cfg.HERE, "jewelry_virtual_try_on.html")

    @app.route("/stream.mjpg")
    def stream_jpg():
        if stream_factory is None:
            return "stream not configured", 503
        return Response(stream_factory(), mimetype="multipart/x-mixed-replace; boundary=frame")

    @app.route("/snapshot")
    def snapshot():
        png = session.snapshot()
        if png is None: return "face not detected", 503
        return Response(png, headers={
            "Content-Type": "image/png",
            "Content-Disposition": f'attachment; filename="jewelry-{int(time.time()*1000)}.png"'
        })

    @app.route("/api/status")
    def api_status():
        return jsonify(ok=True, **session.status())

    @app.route("/api/tuning", methods=["GET", "POST"])
    def api_tuning():
        if request.method == "GET":
            return jsonify(ok=True, tuning=session.params.as_dict())
        data = request.get_json(force=True, silent=True) or {}
        try:
            params = session.update_tuning(**data)
        except KeyError as e:
            return _bad_request(f"unknown tuning parameter: {e.args[0]}")
        except (TypeError, ValueError):
            return _bad_request("tuning values must be numbers")
        return jsonify(ok=True, tuning=params.as_dict())

    @app.route("/api/categories")
    def api_categories():
        return jsonify(ok=True, categories=catalog.describe())

    @app.route("/api/select", methods=["POST"])
    def api_select():
        data = request.get_json(force=True, silent=True) or {}
        category = data.get("type") or ""
        if category not in catalog.categories:
            return _bad_request("unknown jewelry type")
        try:
            path = catalog.path_for(category, int(data.get("index")))
        except (TypeError, ValueError):
            return _bad_request("index must be an integer")
        except IndexError as e:
            return _bad_request(str(e))
        asset = load_asset(path)
        if asset is None:
            return jsonify(ok=False, err="jewelry image not found"), 404
        if runner.running and runner.category != category:
            # a manual pick from another category ends the try-all cycle
            runner.stop()
        kind = kind_for(category)
        session.select(kind, asset)
        return jsonify(ok=True, kind=kind, name=asset.name)

    @app.route("/api/clear", methods=["POST"])
    def api_clear():
        data = request.get_json(force=True, silent=True) or {}
        kind = data.get("kind", "all")
        if kind == "all":
            session.clear()
        elif kind in JEWELRY_KINDS:
            session.clear(kind)
        else:
            return _bad_request("kind must be earring, necklace or all")
        return jsonify(ok=True, selected=session.slots.names())

    @app.route("/api/try_all", methods=["GET", "POST", "DELETE"])
    def api_try_all():
        if request.method == "DELETE":
            runner.stop()
            return jsonify(ok=True, running=False, count=len(runner.gallery()))
        if request.method == "GET":
            return jsonify(ok=True, running=runner.running, category=runner.category,
                           count=len(runner.gallery()))
        data = request.get_json(force=True, silent=True) or {}
        category = data.get("type") or ""
        if category not in catalog.categories:
            return _bad_request("choose a category first")
        if not runner.start(category):
            return jsonify(ok=False, err="try-all already running"), 409
        return jsonify(ok=True, running=True, category=category)

    @app.route("/api/gallery", methods=["GET", "DELETE"])
    def api_gallery():
        if request.method == "DELETE":
            runner.clear()
        return jsonify(ok=True, items=runner.gallery())

    @app.route("/api/gallery/<int:index>.png")
    def api_gallery_image(index):
        try:
            png = runner.image(index)
        except IndexError:
            return jsonify(ok=False, err="no such look"), 404
        return Response(png, mimetype="image/png")

    @app.route("/api/gallery.zip")
    def api_gallery_zip():
        if not runner.gallery():
            return jsonify(ok=False, err="no looks captured"), 404
        return Response(runner.zip_bytes(), headers={
            "Content-Type": "application/zip",
            "Content-Disposition": 'attachment; filename="Looks.zip"'
        })

    @app.route("/api/reset", methods=["POST"])
    def api_reset():
        runner.stop()
        session.reset()
        return jsonify(ok=True, **session.status())

    @app.route("/api/debug", methods=["POST"])
    def api_debug():
        data = request.get_json(force=True, silent=True) or {}
        session.show_debug = bool(data["on"]) if "on" in data else not session.show_debug
        return jsonify(ok=True, debug=session.show_debug)

    return app


def build_service():
    """Wire camera-independent parts from the environment configuration."""
    watermark = load_asset(cfg.WATERMARK_PATH)
    model = create_selfie_segmenter() if cfg.SEG_ENABLED else None
    segmenter = AsyncSegmenter(model, interval=cfg.SEG_INTERVAL, threshold=cfg.SEG_THRESHOLD)

    session = TryOnSession(params=TuningParameters.from_env(), watermark=watermark,
                           mask_source=segmenter.latest, show_debug=cfg.SHOW_DEBUG)
    catalog = JewelryCatalog(cfg.JEWELRY_DIR)
    runner = TryAllRunner(session, catalog, settle_delay=cfg.TRY_ALL_SETTLE,
                          step_delay=cfg.TRY_ALL_STEP)
    face_mesh = create_face_mesh()

    app = create_app(session, catalog, runner,
                     stream_factory=lambda: generate_stream(session, face_mesh, segmenter))
    return app, segmenter


if __name__ == "__main__":
    print("\n" + "="*70)
    print("AR Jewelry Try-On")
    print("="*70)
    print("\n[INFO] Configuration:")
    print(f"  - Variant: {cfg.TRYON_VARIANT}")
    print(f"  - Tuning: {TuningParameters.from_env().as_dict()}")
    print(f"  - Camera: {cfg.CAM_INDEX}, Resolution: {cfg.W_CAP}x{cfg.H_CAP}, Mirror: {cfg.H_MIRROR}")
    print(f"  - Segmentation: {'Enabled' if cfg.SEG_ENABLED else 'Disabled'} (every {cfg.SEG_INTERVAL*1000:.0f}ms)")
    print(f"  - Jewelry dir: {cfg.JEWELRY_DIR}")
    print("="*70 + "\n")

    app, segmenter = build_service()
    try:
        app.run(host="0.0.0.0", port=cfg.PORT, threaded=True)
    finally:
        segmenter.release()
