from flask import Flask, request, jsonify
from flask_cors import CORS
from flasgger import Swagger

import config
from analysis import analyze_time_series, AnalysisError
from config import PipelineSettings
from models import AreaOfInterest
from retrieval import EarthEngineTileSource, initialize_earth_engine

# Initialize Flask app
app = Flask(__name__)
CORS(app)

# Swagger configuration
swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/docs"
}

swagger_template = {
    "info": {
        "title": "Vegetation Index Time Series API",
        "description": "Monthly NDVI, EVI and SAVI composites from Sentinel-2 imagery",
        "version": "1.0.0"
    }
}

swagger = Swagger(app, config=swagger_config, template=swagger_template)

# Tile source used by the analysis endpoint; None until GEE connects
tile_source = None
gee_connected = False

if config.GEE_PROJECT:
    try:
        gee_connected = initialize_earth_engine()
    except Exception as e:
        print(f"Error initializing GEE: {e}")
    if gee_connected:
        tile_source = EarthEngineTileSource()

MAX_YEARS = 10


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_timeseries_request(data) -> list:
    """Return a list of validation error messages, empty when valid."""
    if not isinstance(data, dict):
        return ["Request body must be a JSON object"]

    errors = []

    if "geometry" in data:
        geometry = data["geometry"]
        if isinstance(geometry, dict) and geometry.get("type") == "Feature":
            geometry = geometry.get("geometry")
        if not isinstance(geometry, dict) or geometry.get("type") not in ("Polygon", "MultiPolygon"):
            errors.append("geometry must be a GeoJSON Polygon, MultiPolygon or Feature")
    else:
        for field in ("lat", "lon", "buffer"):
            if field not in data:
                errors.append(f"Missing required field: {field}")
            elif not _is_number(data[field]):
                errors.append(f"{field} must be a number")
        if not errors:
            if not -90 <= data["lat"] <= 90:
                errors.append("lat must be between -90 and 90")
            if not -180 <= data["lon"] <= 180:
                errors.append("lon must be between -180 and 180")
            if not 1 <= data["buffer"] <= 10000:
                errors.append("buffer must be between 1 and 10000 meters")

    years_valid = True
    for field in ("start_year", "end_year"):
        if field not in data:
            errors.append(f"Missing required field: {field}")
            years_valid = False
        elif not isinstance(data[field], int) or isinstance(data[field], bool):
            errors.append(f"{field} must be an integer")
            years_valid = False

    if years_valid and data["end_year"] - data["start_year"] + 1 > MAX_YEARS:
        errors.append(f"Year range may cover at most {MAX_YEARS} years")

    if "cloud_threshold" in data:
        value = data["cloud_threshold"]
        if not _is_number(value) or not 0 <= value <= 100:
            errors.append("cloud_threshold must be a number between 0 and 100")

    return errors


def build_aoi(data: dict) -> AreaOfInterest:
    if "geometry" in data:
        return AreaOfInterest.from_geojson(data["geometry"], data.get("name", "AOI"))
    return AreaOfInterest.from_point(data["lat"], data["lon"], data["buffer"], data.get("name", "AOI"))


@app.route("/api/health", methods=["GET"])
def health():
    """
    Health check endpoint
    ---
    tags:
      - Health
    responses:
      200:
        description: Server status
        schema:
          type: object
          properties:
            status:
              type: string
              example: healthy
            gee_connected:
              type: boolean
              example: true
            tile_source:
              type: string
              example: EarthEngineTileSource
    """
    return jsonify({
        "status": "healthy",
        "gee_connected": gee_connected,
        "tile_source": type(tile_source).__name__ if tile_source is not None else None
    }), 200


@app.route("/api/timeseries", methods=["POST"])
def timeseries_endpoint():
    """
    Build monthly vegetation index composites for an area
    ---
    tags:
      - Analysis
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - start_year
            - end_year
          properties:
            lat:
              type: number
              description: Latitude (-90 to 90), with lon and buffer
              example: -1.2406
            lon:
              type: number
              description: Longitude (-180 to 180)
              example: 36.8370
            buffer:
              type: integer
              description: Buffer radius in meters (1 to 10000)
              example: 1500
            geometry:
              type: object
              description: GeoJSON polygon, instead of lat/lon/buffer
            start_year:
              type: integer
              example: 2024
            end_year:
              type: integer
              example: 2024
            cloud_threshold:
              type: integer
              description: Cloud probability threshold 0-100 (optional)
              example: 40
    responses:
      200:
        description: One entry per month with status, counts and AOI means
        schema:
          type: object
          properties:
            success:
              type: boolean
              example: true
            data:
              type: object
              properties:
                aoi:
                  type: object
                settings:
                  type: object
                summary:
                  type: object
                  description: Counts of ok, empty and failed months
                months:
                  type: array
                  items:
                    type: object
      400:
        description: Validation error
      422:
        description: Analysis failed
      503:
        description: No tile source configured
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({
            "success": False,
            "error": "Invalid JSON in request body"
        }), 400

    validation_errors = validate_timeseries_request(data)
    if validation_errors:
        return jsonify({
            "success": False,
            "error": "Validation failed",
            "details": validation_errors
        }), 400

    if tile_source is None:
        return jsonify({
            "success": False,
            "error": "No tile source configured (Google Earth Engine is not connected)"
        }), 503

    settings = PipelineSettings().with_overrides(
        start_year=data["start_year"],
        end_year=data["end_year"],
        cloud_probability_threshold=data.get("cloud_threshold"),
    )

    try:
        result = analyze_time_series(tile_source, build_aoi(data), settings)
        return jsonify({
            "success": True,
            "data": result.to_dict()
        }), 200

    except AnalysisError as e:
        return jsonify({
            "success": False,
            "error": "Analysis failed",
            "message": str(e)
        }), 422

    except Exception as e:
        return jsonify({
            "success": False,
            "error": "Internal server error",
            "message": str(e)
        }), 500


@app.errorhandler(400)
def bad_request(error):
    return jsonify({
        "success": False,
        "error": "Bad request",
        "message": str(error)
    }), 400


@app.errorhandler(404)
def not_found(error):
    return jsonify({
        "success": False,
        "error": "Not found",
        "message": "The requested endpoint does not exist"
    }), 404


@app.errorhandler(500)
def internal_error(error):
    return jsonify({
        "success": False,
        "error": "Internal server error",
        "message": "An unexpected error occurred"
    }), 500


if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5000)
