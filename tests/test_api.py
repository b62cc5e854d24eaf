"""API tests using the FastAPI test client."""

import pytest
from fastapi.testclient import TestClient

from gradebook.main import app, store

client = TestClient(app)

HEADERS = {'X-User-Id': 'teacher-1'}


@pytest.fixture(autouse=True)
def clean_store(school):
    store.clear()
    response = client.post('/schools', json=school.model_dump(mode='json'))
    assert response.status_code == 201
    yield
    store.clear()


def _admit(first_name: str) -> dict:
    response = client.post('/students', json={
        'school': 'school-1',
        'first_name': first_name,
        'last_name': 'Mensah',
        'current_class': 'JHS 1',
        'admission_date': '2024-09-09',
    })
    assert response.status_code == 201
    return response.json()


def _result_payload(student_id: str, score: float = 70, **subject_fields) -> dict:
    subject = {
        'subject_name': 'Mathematics',
        'subject_code': 'MATH',
        'scores': {name: score for name in ('class_work', 'homework', 'class_test', 'assignment',
                                            'project', 'mid_term_exam', 'final_exam')},
    }
    subject.update(subject_fields)
    return {
        'student': student_id,
        'school': 'school-1',
        'academic_year': '2024/2025',
        'term': 'First Term',
        'class_name': 'JHS 1',
        'exam_type': 'End-of-Term',
        'subjects': [subject],
    }


def _rank():
    return client.post('/results/calculate-positions', json={
        'school': 'school-1', 'class_name': 'JHS 1',
        'academic_year': '2024/2025', 'term': 'First Term',
    })


def test_health_check():
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json()['status'] == 'ok'


def test_result_flow():
    ama = _admit('Ama')
    kofi = _admit('Kofi')
    assert ama['student_id'] == 'STU240001'

    created = client.post('/results', json=_result_payload(ama['id'], 70), headers=HEADERS)
    assert created.status_code == 201
    body = created.json()
    assert body['created_by'] == 'teacher-1'
    assert body['subjects'][0]['grade'] == 'B'
    assert body['overall_performance']['is_promoted'] == True
    client.post('/results', json=_result_payload(kofi['id'], 88), headers=HEADERS)

    ranking = _rank()
    assert ranking.status_code == 200
    assert ranking.json()['cohort_size'] == 2
    assert [r['student'] for r in ranking.json()['rankings']] == [kofi['id'], ama['id']]

    result_id = body['id']
    generated = client.post(f'/results/{result_id}/generate-report', headers=HEADERS)
    assert generated.status_code == 200
    assert generated.json()['status'] == 'Completed'

    published = client.put(f'/results/{result_id}/publish-report', headers={'X-User-Id': 'admin-1'})
    assert published.status_code == 200
    assert published.json()['report_card']['published_by'] == 'admin-1'

    edit = client.put(f'/results/{result_id}/subject/0', json={'pass_mark': 60})
    assert edit.status_code == 409
    assert edit.json()['type'] == 'state_error'

    fetched = client.get(f'/results/{result_id}')
    assert fetched.json()['overall_performance']['position'] == 2
    assert fetched.json()['status'] == 'Published'

    student_results = client.get(f"/results/student/{ama['id']}")
    assert [r['id'] for r in student_results.json()] == [result_id]


def test_publish_before_generate_conflict():
    ama = _admit('Ama')
    result_id = client.post('/results', json=_result_payload(ama['id'])).json()['id']
    response = client.put(f'/results/{result_id}/publish-report')
    assert response.status_code == 409


def test_status_endpoint_archives():
    ama = _admit('Ama')
    result_id = client.post('/results', json=_result_payload(ama['id'])).json()['id']
    response = client.put(f'/results/{result_id}/status', json={'status': 'Archived'})
    assert response.status_code == 200
    assert response.json()['is_active'] == False
    assert client.get('/results', params={'school': 'school-1'}).json() == []


def test_invalid_score_rejected():
    ama = _admit('Ama')
    response = client.post('/results', json=_result_payload(ama['id'], 150))
    assert response.status_code == 422


def test_invalid_weightings_rejected():
    ama = _admit('Ama')
    payload = _result_payload(ama['id'], weightings={'final_exam': 40})
    response = client.post('/results', json=payload)
    assert response.status_code == 422
    assert response.json()['type'] == 'validation_error'
    assert 'sum to 100' in response.json()['detail']


def test_not_found():
    response = client.get('/results/missing')
    assert response.status_code == 404
    assert response.json()['type'] == 'not_found'


def test_school_with_two_active_terms(school):
    school.id = 'school-2'
    school.terms[1].is_active = True
    response = client.post('/schools', json=school.model_dump(mode='json'))
    assert response.status_code == 409
    assert response.json()['type'] == 'consistency_error'


def test_activate_term():
    response = client.put('/schools/school-1/terms/term-c/activate')
    assert response.status_code == 200
    active = client.get('/schools/school-1/terms/active')
    assert active.json()['id'] == 'term-c'


def test_create_term():
    response = client.post('/schools/school-1/terms', json={
        'name': 'Vacation Term', 'start_date': '2025-08-04', 'end_date': '2025-08-29',
    })
    assert response.status_code == 201
    assert response.json()['is_active'] == False


def test_bulk_upload_and_export():
    ama = _admit('Ama')
    kofi = _admit('Kofi')
    sheet = (
        "Student,Subject Name,Subject Code,Class Work,Homework,Class Test,Assignment,Project,Mid-Term Exam,Final Exam\n"
        f"{ama['student_id']},Mathematics,MATH,60,60,60,60,60,60,60\n"
        f"{ama['student_id']},English,ENG,70,70,70,70,70,70,70\n"
        f"{kofi['student_id']},Mathematics,MATH,90,90,90,90,90,90,90\n"
    )
    response = client.post(
        '/results/bulk-upload',
        files={'file': ('scores.csv', sheet.encode(), 'text/csv')},
        data={'school': 'school-1', 'academic_year': '2024/2025', 'term': 'First Term',
              'class_name': 'JHS 1', 'exam_type': 'End-of-Term'},
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body['success'] == True
    assert body['summary'] == {'Total': 2, 'Promoted': 2, 'Not Promoted': 0, 'Subject Rows': 3}

    _rank()
    export = client.get('/results/class/JHS 1/export', params={'school': 'school-1'})
    assert export.status_code == 200
    assert export.headers['content-type'].startswith('text/csv')
    lines = export.text.strip().splitlines()
    assert len(lines) == 3
    assert lines[1].startswith(f"{kofi['id']},Kofi Mensah,JHS 1")

    stats = client.get('/results/statistics', params={'school': 'school-1'}).json()
    assert stats['total'] == 2
    assert stats['highest_average'] == 90.0


def test_bulk_upload_unknown_student_stores_nothing():
    ama = _admit('Ama')
    sheet = (
        "Student,Subject Name,Subject Code,Final Exam\n"
        f"{ama['student_id']},Mathematics,MATH,60\n"
        "STU999999,Mathematics,MATH,70\n"
    )
    response = client.post(
        '/results/bulk-upload',
        files={'file': ('scores.csv', sheet.encode(), 'text/csv')},
        data={'school': 'school-1', 'academic_year': '2024/2025', 'term': 'First Term',
              'class_name': 'JHS 1', 'exam_type': 'End-of-Term'},
    )
    assert response.status_code == 404
    assert client.get('/results', params={'school': 'school-1'}).json() == []


def test_export_empty_class():
    response = client.get('/results/class/JHS 3/export', params={'school': 'school-1'})
    assert response.status_code == 404


def test_generate_after_score_edit_needs_ranking():
    ama = _admit('Ama')
    result_id = client.post('/results', json=_result_payload(ama['id'], 60)).json()['id']
    _rank()
    edited = client.put(f'/results/{result_id}/subject/0', json={'scores': {'final_exam': 100}})
    assert edited.status_code == 200
    assert edited.json()['overall_performance']['position'] is None

    response = client.post(f'/results/{result_id}/generate-report')
    assert response.status_code == 409
    _rank()
    assert client.post(f'/results/{result_id}/generate-report').status_code == 200


def test_school_catalogue_routes():
    added = client.post('/schools/school-1/subjects', json={'name': 'Mathematics', 'code': 'MATH', 'pass_mark': 60})
    assert added.status_code == 201
    assert added.json()['subjects'][0]['pass_mark'] == 60

    updated = client.put('/schools/school-1/subjects/MATH', json={'name': 'Mathematics', 'code': 'MATH', 'pass_mark': 55})
    assert updated.json()['subjects'][0]['pass_mark'] == 55
    assert client.delete('/schools/school-1/subjects/MATH').json()['subjects'] == []
    assert client.delete('/schools/school-1/subjects/MATH').status_code == 404

    classes = client.post('/schools/school-1/classes', json={'name': 'KG 2', 'position': 0})
    assert [c['name'] for c in classes.json()['classes']] == ['KG 2', 'JHS 1', 'JHS 2', 'JHS 3']
    renamed = client.put('/schools/school-1/classes/KG 2', json={'name': 'Basic 1'})
    assert renamed.json()['classes'][0]['name'] == 'Basic 1'
    assert client.post('/schools/school-1/classes', json={'name': 'JHS 1'}).status_code == 422
    assert len(client.delete('/schools/school-1/classes/Basic 1').json()['classes']) == 3


def test_update_term_route():
    response = client.put('/schools/school-1/terms/term-b', json={'name': 'Lent Term', 'is_active': True})
    assert response.status_code == 200
    assert response.json()['name'] == 'Lent Term'
    assert response.json()['is_active'] == False
    assert client.get('/schools/school-1/terms/active').json()['id'] == 'term-a'


def test_statistics_by_class():
    ama = _admit('Ama')
    client.post('/results', json=_result_payload(ama['id'], 70))
    payload = _result_payload(ama['id'], 50)
    payload['class_name'] = 'JHS 2'
    client.post('/results', json=payload)

    stats = client.get('/results/statistics', params={'school': 'school-1', 'by_class': True}).json()
    assert [(s['class_name'], s['average_score']) for s in stats] == [('JHS 1', 70.0), ('JHS 2', 50.0)]
