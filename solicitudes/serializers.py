from taller.serializers import persona_a_dict


def solicitud_a_dict(s):
    return {
        "id": s.id,
        "carId": s.auto_id,
        "clientId": s.cliente_id,
        "preferredMechanicId": s.mecanico_preferido_id,
        "bossId": s.jefe_asignado_id,
        "mechanicId": s.mecanico_asignado_id,
        "description": s.descripcion,
        "status": s.estado,
        "statusName": s.get_estado_display(),
        "budget": (
            {"description": s.presupuesto_descripcion, "cost": s.presupuesto_costo}
            if s.presupuesto_costo is not None else None
        ),
        "repairId": s.reparacion_id,
        "createdAt": s.creado_en,
    }


def solicitud_detalle_a_dict(s):
    data = solicitud_a_dict(s)
    data["car"] = {
        "id": s.auto.id,
        "licensePlate": s.auto.patente,
        "brand": s.auto.marca,
        "model": s.auto.modelo,
        "statusId": s.auto.estado,
    }
    data["client"] = persona_a_dict(s.cliente)
    data["mechanic"] = persona_a_dict(s.mecanico_asignado)
    return data
