from flask import Blueprint, jsonify

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the WARFOG game server!'})

@main.route('/api/health')
def health():
    return jsonify({'status': 'ok'})
