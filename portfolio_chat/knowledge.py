"""Static knowledge base served to the model.

This is the only source of facts the assistant is allowed to use.
"""

from typing import Any, Dict

KNOWLEDGE: Dict[str, Any] = {
    "profile": {
        "name": "Adrián Agüero",
        "role": "Data Engineer",
        "experience": "+1 año en banca",
        "location": "Buenos Aires (AMBA)",
        "english_level": "B1",
        "work_mode": "Remoto o Híbrido",
        "relocation": "No",
        "cv": "https://drive.google.com/file/d/1WOkUvivKh84Ry-0YwkbrqOz2zcAvAczk/view",
        "summary": (
            "Data Engineer con experiencia en procesos ETL y Big Data. "
            "Especializado en SQL, Hive, NiFi y Spark. Trabajé con datos "
            "financieros críticos (ATM, Contabilidad, Homebanking) y participé "
            "en la integración y estandarización multi-banco. Busco roles "
            "orientados a cloud."
        ),
    },
    "work_experience": [
        {
            "company": "Helios System (Banca)",
            "role": "Data Engineer",
            "period": "2024 - Actualidad",
            "responsibilities": [
                "Desarrollo y mantenimiento de pipelines ETL sobre Hadoop.",
                "Integración de datos ATM, Contabilidad y Homebanking.",
                "Unificación multi-banco (BER, BSJ, BSC, BSF).",
                "Optimización de consultas SQL en tablas de gran volumen.",
                "Automatización de procesos usando Apache NiFi.",
                "Validación de calidad de datos y conciliaciones.",
                "Soporte y documentación de procesos financieros.",
            ],
            "tech": [
                "Hive SQL", "Spark", "PySpark", "HDFS",
                "Apache NiFi", "Impala", "Kudu", "Apache Atlas",
            ],
            "achievements": [
                "Unificación de modelos ATM/Contabilidad/Homebanking.",
                "Mejoras en performance SQL.",
                "Reducción de tareas manuales mediante automatización en NiFi.",
            ],
            "data_types": [
                "Transacciones ATM", "Reversas", "Saldos contables",
                "Movimientos bancarios", "Datos de Homebanking",
            ],
        },
        {
            "company": "Neoris",
            "role": "Trainee .NET Developer",
            "period": "2023",
            "responsibilities": [
                "Soporte en desarrollo backend .NET.",
                "Mantenimiento de APIs REST.",
                "Optimización de consultas SQL.",
                "Resolución de bugs y tareas operativas.",
            ],
            "tech": ["C#", ".NET", "SQL Server"],
        },
    ],
    "skills": {
        "primary": ["SQL", "Hive", "Hadoop", "NiFi"],
        "secondary": ["Spark", "Impala", "Kudu", "Python"],
        "cloud": ["Azure (ADF, Synapse)"],
        "soft": ["Trabajo en banca", "Estandarización de datos", "Data Quality"],
    },
    "goals": {
        "roles": [
            "Data Engineer Jr/Ssr",
            "Big Data Engineer",
            "Cloud Data Engineer",
            "ETL Developer",
        ],
        "direction": "Migrar a tecnologías cloud",
        "looking_for": (
            "Estoy abierto a nuevas oportunidades en Data Engineering, "
            "especialmente roles que me permitan crecer hacia tecnologías "
            "cloud. Me interesan posiciones como Data Engineer Jr/Ssr, Big "
            "Data Engineer, Cloud Data Engineer o ETL Developer."
        ),
    },
}
