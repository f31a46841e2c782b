"""
Complaint submission, attachments, public tracking, admin triage, and notifications
"""
import io
import os
from unittest.mock import patch

from PIL import Image
from sqlalchemy.exc import OperationalError

from models import Complaint, DepartmentCounter, EmailAuditLog
from utils.email_service import EmailDeliveryError


def _submit(client, payload):
    return client.post('/api/submit_complaint', json=payload)


def _submit_with_file(client, payload, content, filename, mimetype):
    data = dict(payload)
    data['file'] = (io.BytesIO(content), filename, mimetype)
    return client.post('/api/submit_complaint', data=data, content_type='multipart/form-data')


def _png_bytes():
    buffer = io.BytesIO()
    Image.new('RGB', (4, 4), color=(200, 30, 30)).save(buffer, format='PNG')
    return buffer.getvalue()


class TestSubmitComplaint:
    """Complaint intake"""

    def test_submission_returns_tracking_id(self, app, client, complaint_payload):
        response = _submit(client, complaint_payload)

        assert response.status_code == 201
        body = response.get_json()
        assert body['trackingId'] == '4649245101'
        assert body['message'] == 'Complaint submitted successfully with priority: HIGH'
        with app.app_context():
            complaint = Complaint.query.filter_by(tracking_id='4649245101').one()
            assert complaint.status == 'pending'
            assert complaint.priority == 'high'
            assert len(complaint.status_history) == 1

    def test_missing_required_field(self, client, complaint_payload):
        del complaint_payload['description']

        response = _submit(client, complaint_payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'All required fields must be filled'

    def test_malformed_email(self, client, complaint_payload):
        complaint_payload['email'] = 'not-an-email'

        response = _submit(client, complaint_payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Please enter a valid email address'

    def test_invalid_priority(self, client, complaint_payload):
        complaint_payload['priority'] = 'whenever'

        response = _submit(client, complaint_payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid priority'

    def test_other_sub_category_uses_description(self, app, client, complaint_payload):
        complaint_payload['subCategory'] = 'other'
        complaint_payload['subOther'] = 'Broken window latch'

        response = _submit(client, complaint_payload)

        assert response.status_code == 201
        with app.app_context():
            assert Complaint.query.one().sub_category == 'Broken window latch'

    def test_other_sub_category_requires_description(self, client, complaint_payload):
        complaint_payload['subCategory'] = 'other'

        response = _submit(client, complaint_payload)

        assert response.status_code == 400

    def test_confirmation_email_is_sent_and_audited(self, app, client, complaint_payload, mail_outbox):
        _submit(client, complaint_payload)

        assert len(mail_outbox) == 1
        assert mail_outbox[0]['subject'] == 'Complaint Submitted Successfully'
        assert mail_outbox[0]['recipients'] == [complaint_payload['email']]
        assert '4649245101' in mail_outbox[0]['text']
        with app.app_context():
            log = EmailAuditLog.query.one()
            assert log.delivery_status == 'SENT'

    def test_email_failure_does_not_fail_submission(self, app, client, complaint_payload):
        with patch('utils.email_service._dispatch_email', side_effect=EmailDeliveryError('relay down')):
            response = _submit(client, complaint_payload)

        assert response.status_code == 201
        with app.app_context():
            assert Complaint.query.count() == 1
            log = EmailAuditLog.query.one()
            assert log.delivery_status == 'FAILED'
            assert 'relay down' in log.error_message


    def test_counter_failure_is_a_server_error(self, app, client, complaint_payload):
        locked = OperationalError('UPDATE department_counters', {}, Exception('database is locked'))
        with patch('utils.tracking.next_sequence', side_effect=locked):
            response = _submit(client, complaint_payload)

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Failed to submit complaint. Please try again.'
        with app.app_context():
            assert Complaint.query.count() == 0

    def test_storage_failure_after_issuing_burns_the_number(self, app, client, complaint_payload):
        failure = OperationalError('INSERT INTO complaints', {}, Exception('disk I/O error'))
        with patch('routes.complaints._record_status', side_effect=failure):
            response = _submit_with_file(client, complaint_payload, b'%PDF-1.4 test document', 'report.pdf', 'application/pdf')

        assert response.status_code == 500
        assert os.listdir(app.config['UPLOAD_FOLDER']) == []
        with app.app_context():
            assert Complaint.query.count() == 0
            assert DepartmentCounter.query.one().seq == 1

        retry = _submit(client, complaint_payload)
        assert retry.get_json()['trackingId'] == '4649245102'


class TestAttachments:
    """Optional file upload on submission"""

    def test_pdf_is_stored_and_downloadable(self, app, client, complaint_payload):
        response = _submit_with_file(client, complaint_payload, b'%PDF-1.4 test document', 'report.pdf', 'application/pdf')

        assert response.status_code == 201
        with app.app_context():
            file_path = Complaint.query.one().file_path
        assert file_path.startswith('/uploads/') and file_path.endswith('.pdf')
        assert os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], file_path.rsplit('/', 1)[1]))

        download = client.get(file_path)
        assert download.status_code == 200
        assert download.data == b'%PDF-1.4 test document'

    def test_valid_png_is_accepted(self, client, complaint_payload):
        response = _submit_with_file(client, complaint_payload, _png_bytes(), 'photo.png', 'image/png')

        assert response.status_code == 201

    def test_unsupported_extension_is_rejected(self, app, client, complaint_payload):
        response = _submit_with_file(client, complaint_payload, b'MZ...', 'tool.exe', 'application/octet-stream')

        assert response.status_code == 400
        assert 'Unsupported file format' in response.get_json()['error']
        with app.app_context():
            assert Complaint.query.count() == 0

    def test_fake_image_is_rejected(self, client, complaint_payload):
        response = _submit_with_file(client, complaint_payload, b'definitely not a png', 'photo.png', 'image/png')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Image validation failed'

    def test_oversized_file_is_rejected_before_issuing_an_id(self, app, client, complaint_payload):
        app.config['MAX_ATTACHMENT_BYTES'] = 1024

        response = _submit_with_file(client, complaint_payload, b'%PDF' + b'0' * 4096, 'big.pdf', 'application/pdf')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'File size should be less than 1MB'
        with app.app_context():
            assert DepartmentCounter.query.count() == 0

    def test_missing_upload_is_404(self, client):
        response = client.get('/uploads/nothing-here.pdf')

        assert response.status_code == 404


class TestTrackComplaint:
    """Public lookup by tracking ID"""

    def test_tracking_returns_public_view(self, client, complaint_payload):
        _submit(client, complaint_payload)

        response = client.get('/api/complaints/4649245101')

        assert response.status_code == 200
        body = response.get_json()
        assert body['trackingId'] == '4649245101'
        assert body['status'] == 'pending'
        assert 'email' not in body
        assert 'description' not in body

    def test_unknown_tracking_id(self, client):
        response = client.get('/api/complaints/4649000001')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'Complaint not found'


class TestAdminListing:
    """Admin views of the complaint queue"""

    def test_listing_requires_authentication(self, client):
        assert client.get('/api/complaints').status_code == 401

    def test_listing_forbidden_for_students(self, client, student_headers):
        assert client.get('/api/complaints', headers=student_headers).status_code == 403

    def test_listing_with_filters(self, client, admin_headers, complaint_payload):
        _submit(client, complaint_payload)
        complaint_payload['priority'] = 'low'
        complaint_payload['department'] = 'Civil Engineering'
        _submit(client, complaint_payload)

        everything = client.get('/api/complaints', headers=admin_headers).get_json()
        low_only = client.get('/api/complaints', query_string={'priority': 'low'}, headers=admin_headers).get_json()
        civil = client.get('/api/complaints', query_string={'department': 'civil engineering'}, headers=admin_headers).get_json()

        assert len(everything) == 2
        assert [c['trackingId'] for c in low_only] == ['4649191101']
        assert [c['trackingId'] for c in civil] == ['4649191101']
        assert everything[0]['email'] == complaint_payload['email']

    def test_stats(self, client, admin_headers, complaint_payload):
        _submit(client, complaint_payload)
        complaint_payload['priority'] = 'urgent'
        _submit(client, complaint_payload)

        stats = client.get('/api/complaints/stats', headers=admin_headers).get_json()

        assert stats['total'] == 2
        assert stats['byStatus']['pending'] == 2
        assert stats['byStatus']['resolved'] == 0
        assert stats['byPriority'] == {'urgent': 1, 'high': 1, 'medium': 0, 'low': 0}
        assert stats['byDepartment'] == {'Computer Engineering': 2}

    def test_get_by_id(self, app, client, admin_headers, complaint_payload):
        _submit(client, complaint_payload)
        with app.app_context():
            complaint_id = Complaint.query.one().id

        response = client.get(f'/api/complaints/id/{complaint_id}', headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()['_id'] == complaint_id


class TestComplaintsByEmail:
    """Students see only their own complaints"""

    def test_student_sees_own_complaints(self, client, student, student_headers, complaint_payload):
        _submit(client, complaint_payload)

        response = client.get(f'/api/complaints-by-email?email={student.email}', headers=student_headers)

        assert response.status_code == 200
        assert len(response.get_json()) == 1

    def test_student_cannot_read_others(self, client, student_headers):
        response = client.get('/api/complaints-by-email?email=someone@college.edu', headers=student_headers)

        assert response.status_code == 403

    def test_admin_can_read_any(self, client, admin_headers, complaint_payload):
        _submit(client, complaint_payload)

        response = client.get(f"/api/complaints-by-email?email={complaint_payload['email']}", headers=admin_headers)

        assert response.status_code == 200
        assert len(response.get_json()) == 1


class TestStatusTransitions:
    """Admin workflow moves and resolution notifications"""

    def _complaint_id(self, app, client, payload):
        _submit(client, payload)
        with app.app_context():
            return Complaint.query.one().id

    def _move(self, client, headers, complaint_id, status, remarks=None):
        body = {'status': status}
        if remarks:
            body['remarks'] = remarks
        return client.put(f'/api/complaints/{complaint_id}/status', json=body, headers=headers)

    def test_pending_to_in_progress(self, app, client, admin_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        response = self._move(client, admin_headers, complaint_id, 'in_progress', remarks='Electrician assigned')

        assert response.status_code == 200
        body = response.get_json()
        assert body['status'] == 'in_progress'
        assert body['history'][-1] == {
            'previousStatus': 'pending',
            'status': 'in_progress',
            'remarks': 'Electrician assigned',
            'changedAt': body['history'][-1]['changedAt'],
        }

    def test_same_status_is_rejected(self, app, client, admin_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        response = self._move(client, admin_headers, complaint_id, 'pending')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Complaint is already pending'

    def test_unknown_status_is_rejected(self, app, client, admin_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        response = self._move(client, admin_headers, complaint_id, 'closed')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid status'

    def test_resolve_stamps_time_and_emails_student(self, app, client, admin_headers, complaint_payload, mail_outbox):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        response = self._move(client, admin_headers, complaint_id, 'resolved', remarks='Fan replaced')

        assert response.status_code == 200
        assert response.get_json()['resolvedAt'] is not None
        assert [m['subject'] for m in mail_outbox] == ['Complaint Submitted Successfully', 'Your complaint has been resolved']
        assert 'Fan replaced' in mail_outbox[-1]['text']

    def test_resolved_can_only_reopen(self, app, client, admin_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)
        self._move(client, admin_headers, complaint_id, 'resolved')

        backwards = self._move(client, admin_headers, complaint_id, 'pending')
        reopened = self._move(client, admin_headers, complaint_id, 'reopened')

        assert backwards.status_code == 400
        assert reopened.status_code == 200
        assert reopened.get_json()['resolvedAt'] is None

    def test_resolution_email_failure_keeps_status(self, app, client, admin_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        with patch('utils.email_service._dispatch_email', side_effect=EmailDeliveryError('relay down')):
            response = self._move(client, admin_headers, complaint_id, 'resolved')

        assert response.status_code == 200
        with app.app_context():
            assert Complaint.query.one().status == 'resolved'

    def test_status_update_requires_admin(self, app, client, student_headers, complaint_payload):
        complaint_id = self._complaint_id(app, client, complaint_payload)

        response = self._move(client, student_headers, complaint_id, 'resolved')

        assert response.status_code == 403

    def test_unknown_complaint(self, client, admin_headers):
        response = self._move(client, admin_headers, 'does-not-exist', 'resolved')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'Complaint not found'
