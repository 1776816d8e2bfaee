def persona_a_dict(perfil_persona):
    """Cliente/Mecanico/Jefe → datos públicos de su usuario."""
    if perfil_persona is None:
        return None
    u = perfil_persona.user
    return {
        "id": perfil_persona.id,
        "user": {"id": u.id, "name": u.first_name, "lastName": u.last_name, "email": u.email},
    }


def auto_a_dict(auto, con_reparaciones=False):
    data = {
        "id": auto.id,
        "licensePlate": auto.patente,
        "brand": auto.marca,
        "model": auto.modelo,
        "year": auto.anio,
        "kms": auto.kms,
        "chassis": auto.chasis,
        "description": auto.descripcion,
        "statusId": auto.estado,
        "status": {"id": auto.estado, "name": auto.get_estado_display()},
        "priority": auto.prioridad,
        "clientId": auto.cliente_id,
        "mechanicId": auto.mecanico_id,
        "client": persona_a_dict(auto.cliente),
        "mechanic": persona_a_dict(auto.mecanico),
        "createdAt": auto.creado_en,
    }
    if con_reparaciones:
        data["repairs"] = [reparacion_a_dict(r, con_auto=False) for r in auto.reparaciones.all()]
    return data


def reparacion_a_dict(rep, con_auto=True):
    data = {
        "id": rep.id,
        "carId": rep.auto_id,
        "mechanicId": rep.mecanico_id,
        "description": rep.descripcion,
        "cost": rep.costo,
        "warranty": rep.garantia_dias,
        "createdAt": rep.creado_en,
    }
    if con_auto:
        data["car"] = auto_a_dict(rep.auto)
        data["mechanic"] = persona_a_dict(rep.mecanico)
    return data


def historial_a_dict(h):
    return {
        "status": h.estado,
        "statusName": h.get_estado_display(),
        "trigger": h.disparador,
        "start": h.inicio,
        "end": h.fin,
    }
