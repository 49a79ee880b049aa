"""HTTP layer: Flask blueprints, bearer token decorator and error handlers."""
