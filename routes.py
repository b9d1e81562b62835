# Routes for handling requests
from flask import Blueprint, request, jsonify
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity

from dispatcher import dispatch

api_bp = Blueprint('api', __name__)

INDEX_PAGE = """<!DOCTYPE html>
<html>
<head><title>Social Query API</title></head>
<body>
<h1>Social Query API</h1>
<p>Endpoint: <code>POST /query</code></p>
<pre>
{ "query": "{ users { id username name } }" }

{ "query": "{ posts { id content author { username } } }" }

{ "query": "mutation { register(input: $input) { token user { id } } }",
  "variables": { "input": { "username": "test_user", "email": "test@example.com",
                            "password": "password123", "name": "Test User" } } }

{ "operation": "createPost", "variables": { "input": { "content": "Hello!" } } }
</pre>
</body>
</html>
"""


@api_bp.route('/', methods=['GET'])
def welcome():
    """Welcome page for the API"""
    return INDEX_PAGE, 200, {'Content-Type': 'text/html; charset=utf-8'}


@api_bp.route('/query', methods=['POST'])
def handle_query():
    """Run one operation and return its envelope"""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"errors": [{"message": "Invalid JSON"}]}), 400

    # A bearer token is optional; without one the fallback user acts
    verify_jwt_in_request(optional=True)
    actor_id = get_jwt_identity()

    return jsonify(dispatch(payload, actor_id=actor_id)), 200
