"""
Resolution feedback and contact messages
"""
from models import ContactMessage, Feedback


class TestSubmitFeedback:
    """Ratings collected after a complaint is resolved"""

    def _payload(self, **overrides):
        payload = {
            'complaintId': '4649245101',
            'feedback': 'Fixed the same day, thanks',
            'resolution': 'Fan replaced',
            'rating': 5,
        }
        payload.update(overrides)
        return payload

    def test_feedback_is_stored(self, app, client):
        response = client.post('/api/submit_feedback', json=self._payload())

        assert response.status_code == 201
        assert response.get_json()['message'] == 'Feedback submitted successfully'
        with app.app_context():
            entry = Feedback.query.one()
            assert entry.complaint_id == '4649245101'
            assert entry.rating == 5

    def test_zero_rating_is_valid(self, client):
        response = client.post('/api/submit_feedback', json=self._payload(rating=0))

        assert response.status_code == 201

    def test_rating_above_five_rejected(self, client):
        response = client.post('/api/submit_feedback', json=self._payload(rating=6))

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Rating must be between 0 and 5'

    def test_missing_rating_rejected(self, client):
        payload = self._payload()
        del payload['rating']

        response = client.post('/api/submit_feedback', json=payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'All required fields must be filled'

    def test_missing_feedback_text_rejected(self, client):
        response = client.post('/api/submit_feedback', json=self._payload(feedback=''))

        assert response.status_code == 400


class TestContact:
    """Contact-us messages"""

    def test_anonymous_contact(self, app, client):
        response = client.post(
            '/api/contact',
            json={'name': 'Ravi', 'email': 'ravi@college.edu', 'subject': 'Hostel', 'message': 'Who handles hostel Wi-Fi?'},
        )

        assert response.status_code == 201
        with app.app_context():
            assert ContactMessage.query.one().user_id == 'anonymous'

    def test_contact_with_user_id(self, app, client, student):
        response = client.post(
            '/api/contact',
            json={
                'name': 'Test Student',
                'email': student.email,
                'subject': 'Status',
                'message': 'Any update?',
                'userId': student.id,
            },
        )

        assert response.status_code == 201
        with app.app_context():
            assert ContactMessage.query.one().user_id == student.id

    def test_invalid_email_rejected(self, client):
        response = client.post(
            '/api/contact',
            json={'name': 'Ravi', 'email': 'ravi', 'subject': 'Hostel', 'message': 'Hello'},
        )

        assert response.status_code == 400
